"""Supervised background tasks for generation pipelines.

Each accepted job runs its pipeline as an asyncio task owned by the
supervisor. Tasks can be cancelled individually or all at shutdown, and an
unexpected exception is reported to `on_crash` so it lands on the job record
instead of only in the logs.
"""

import asyncio
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)

CrashHandler = Callable[[UUID, BaseException], Awaitable[None]]


class PipelineSupervisor:
    def __init__(self, on_crash: Optional[CrashHandler] = None):
        self.on_crash = on_crash
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._closing = False

    def spawn(self, job_id: UUID, coro: Awaitable[None]) -> asyncio.Task:
        """Start a pipeline task for a job.

        Raises:
            RuntimeError: Supervisor is shutting down, or the job already has a live task
        """
        if self._closing:
            raise RuntimeError("pipeline supervisor is shutting down")
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            raise RuntimeError(f"pipeline already running for job {job_id}")

        task = asyncio.create_task(self._run(job_id, coro), name=f"generation-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._forget(job_id, t))
        return task

    async def _run(self, job_id: UUID, coro: Awaitable[None]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning("pipeline.cancelled", job_id=str(job_id))
            raise
        except Exception as e:
            logger.error(
                "pipeline.crashed",
                job_id=str(job_id),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if self.on_crash is not None:
                try:
                    await self.on_crash(job_id, e)
                except Exception as hook_error:
                    logger.error(
                        "pipeline.crash_handler_failed",
                        job_id=str(job_id),
                        error=str(hook_error),
                    )

    def _forget(self, job_id: UUID, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def is_running(self, job_id: UUID) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def cancel(self, job_id: UUID) -> bool:
        """Request cancellation of a job's pipeline; False if none is running."""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def wait_idle(self) -> None:
        """Wait until every pipeline task has finished (including ones spawned meanwhile)."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all running pipelines and wait for them to unwind."""
        self._closing = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("pipeline.supervisor_stopped", cancelled=len(tasks))

    def __len__(self) -> int:
        return len(self._tasks)
