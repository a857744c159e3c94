from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from opentelemetry import trace
from starlette.requests import Request

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Work = Callable[[], Awaitable[object]]
TimeoutHandler = Callable[[str, str], object]


class JobDispatcher:
    """Runs submitted jobs as asyncio tasks, at most ``max_concurrency`` at a time.

    Each job is time-boxed; when the box expires ``on_timeout(job_id, message)``
    is called so the caller can record the failure. Task references are kept
    until the task finishes so jobs can be cancelled by id.
    """

    def __init__(self, *, max_concurrency: int, job_timeout_seconds: float) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.job_timeout_seconds = job_timeout_seconds
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, job_id: str, work: Work, *, on_timeout: TimeoutHandler | None = None) -> asyncio.Task[None]:
        previous = self._tasks.get(job_id)
        if previous is not None and not previous.done():
            return previous

        task = asyncio.create_task(self._run(job_id, work, on_timeout), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda finished: self._forget(job_id, finished))
        return task

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("job cancelled job_id=%s", job_id)
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run(self, job_id: str, work: Work, on_timeout: TimeoutHandler | None) -> None:
        async with self._semaphore:
            with tracer.start_as_current_span("dispatcher.run_job") as span:
                span.set_attribute("job.id", job_id)
                try:
                    await asyncio.wait_for(work(), timeout=self.job_timeout_seconds)
                except asyncio.TimeoutError:
                    message = f"job timed out after {self.job_timeout_seconds:g}s"
                    logger.warning("job timed out job_id=%s timeout_seconds=%s", job_id, self.job_timeout_seconds)
                    span.set_attribute("job.timed_out", True)
                    if on_timeout is not None:
                        on_timeout(job_id, message)
                except asyncio.CancelledError:
                    span.set_attribute("job.cancelled", True)
                    raise
                except Exception:
                    logger.exception("job execution failed job_id=%s", job_id)

    def _forget(self, job_id: str, finished: asyncio.Task[None]) -> None:
        if self._tasks.get(job_id) is finished:
            del self._tasks[job_id]


def get_dispatcher(request: Request) -> JobDispatcher:
    # Set by the app lifespan.
    return request.app.state.dispatcher
