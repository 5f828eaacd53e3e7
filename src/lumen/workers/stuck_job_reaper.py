"""Stuck job reaper.

Vendors occasionally never call back, and a restart abandons in-flight
pipelines. Jobs still pending/processing after JOB_TIMEOUT_SECONDS have
their unsettled images failed and are finalized (or failed outright when
they never got images), so they stop occupying a processing slot forever.
"""

import asyncio
from datetime import timedelta
from typing import Callable

import structlog

from lumen.core.config import Settings
from lumen.core.timezone import utcnow
from lumen.services.generation.orchestrator import GenerationOrchestrator

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "image generation timed out"
BATCH_SIZE = 100


async def reap_stuck_jobs(
    orchestrator: GenerationOrchestrator,
    uow_factory: Callable,
    timeout_seconds: int,
    batch_size: int = BATCH_SIZE,
) -> int:
    """Expire every job older than the timeout that is still in flight.

    Each job is handled independently; one job's failure is logged and does
    not stop the sweep.

    Returns:
        Number of jobs that reached a terminal state
    """
    cutoff = utcnow() - timedelta(seconds=timeout_seconds)
    async with await uow_factory() as uow:
        stale_jobs = await uow.generation_jobs.list_stale(cutoff, limit=batch_size)

    if not stale_jobs:
        return 0

    expired = 0
    for job in stale_jobs:
        try:
            if await orchestrator.expire_job(job.id, TIMEOUT_MESSAGE):
                expired += 1
        except Exception as e:
            logger.error(
                "reaper.job_failed",
                job_id=str(job.id),
                error=str(e),
                error_type=type(e).__name__,
            )

    logger.info("reaper.swept", stale=len(stale_jobs), expired=expired)
    return expired


async def run_stuck_job_reaper(
    orchestrator: GenerationOrchestrator,
    uow_factory: Callable,
    settings: Settings,
) -> None:
    """Main reaper loop.

    Sweeps every REAPER_INTERVAL_SECONDS until cancelled. Returns immediately
    when JOB_TIMEOUT_SECONDS is 0.
    """
    if settings.job_timeout_seconds <= 0:
        logger.info("reaper.disabled")
        return

    logger.info(
        "reaper.started",
        job_timeout_seconds=settings.job_timeout_seconds,
        interval_seconds=settings.reaper_interval_seconds,
    )

    try:
        while True:
            try:
                await reap_stuck_jobs(orchestrator, uow_factory, settings.job_timeout_seconds)
                await asyncio.sleep(settings.reaper_interval_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "reaper.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)
    except asyncio.CancelledError:
        logger.info("reaper.stopped")
        raise
