"""Orchestration components: job queues and the worker pool."""

from site_spine.orchestration.celery_queue import CeleryJobQueue
from site_spine.orchestration.queue import FailedJob, InMemoryJobQueue, JobQueue
from site_spine.orchestration.worker import WorkerPool

__all__ = [
    "JobQueue",
    "FailedJob",
    "InMemoryJobQueue",
    "CeleryJobQueue",
    "WorkerPool",
    "build_queue",
]


def build_queue(settings=None) -> JobQueue:
    """Create the job queue for the configured repository and backend types."""
    from site_spine.config import get_settings
    from site_spine.errors import ConfigError

    settings = settings or get_settings()

    if settings.repository_type == "memory":
        if settings.backend_type == "celery":
            raise ConfigError("The celery backend needs a shared queue ledger; use repository_type=postgres")
        return InMemoryJobQueue(
            max_attempts=settings.job_max_attempts, lease_seconds=settings.job_lease_seconds
        )

    from site_spine.orchestration.postgres_queue import PostgresJobQueue

    ledger = PostgresJobQueue(
        max_attempts=settings.job_max_attempts, lease_seconds=settings.job_lease_seconds
    )
    if settings.backend_type == "celery":
        return CeleryJobQueue(ledger)
    return ledger
