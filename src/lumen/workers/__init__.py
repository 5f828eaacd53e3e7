"""Background workers for async processing tasks."""

from lumen.workers.stuck_job_reaper import reap_stuck_jobs, run_stuck_job_reaper

__all__ = [
    "reap_stuck_jobs",
    "run_stuck_job_reaper",
]
