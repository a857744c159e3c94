from __future__ import annotations

import asyncio
import logging

from intake.services.request_manager import RequestManager

logger = logging.getLogger(__name__)


async def run_expiry_sweeper(manager: RequestManager, interval_seconds: float, stop_event: asyncio.Event) -> None:
    """Drop expired job entries every ``interval_seconds`` until ``stop_event`` is set."""
    logger.info("expiry sweeper started interval_seconds=%s", interval_seconds)
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
        else:
            break

        try:
            removed = manager.sweep_expired()
        except Exception:  # pragma: no cover - keep sweeping on unexpected errors
            logger.exception("expiry sweep failed")
            continue
        if removed:
            logger.info("expiry sweep removed=%s remaining=%s", removed, len(manager))
    logger.info("expiry sweeper stopped")
