from contextlib import asynccontextmanager
import asyncio
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from intake.api.router import api_router
from intake.core.config import get_settings
from intake.core.telemetry import (
    TelemetryRuntime,
    configure_logging,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from intake.jobs.expiry_sweeper import run_expiry_sweeper
from intake.services.dispatcher import JobDispatcher
from intake.services.pipeline import get_pipeline
from intake.services.record_store import get_record_store
from intake.services.request_manager import get_request_manager
from intake.services.url_cache import get_url_cache

settings = get_settings()
configure_logging()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    dispatcher = JobDispatcher(
        max_concurrency=settings.worker_concurrency,
        job_timeout_seconds=settings.job_timeout_seconds,
    )
    app.state.dispatcher = dispatcher
    stop_event = asyncio.Event()
    sweeper = asyncio.create_task(
        run_expiry_sweeper(get_request_manager(), settings.sweep_interval_seconds, stop_event)
    )
    try:
        yield
    finally:
        stop_event.set()
        await sweeper
        await dispatcher.shutdown()
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        await get_record_store().close()
        get_record_store.cache_clear()
        url_cache = get_url_cache()
        if url_cache is not None:
            await url_cache.close()
        get_url_cache.cache_clear()
        get_pipeline.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
