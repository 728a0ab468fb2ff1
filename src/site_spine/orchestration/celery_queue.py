"""Celery transport: jobs are recorded in a ledger queue and executed by Celery workers."""

from typing import Callable

import structlog

from site_spine.models import DeployJob
from site_spine.orchestration.queue import FailedJob, JobQueue

logger = structlog.get_logger()


def _send_to_celery(job_id: str) -> str:
    from site_spine.tasks import run_deploy_job_task

    task = run_deploy_job_task.delay(job_id)
    return task.id


class CeleryJobQueue(JobQueue):
    """
    Job queue that hands execution to Celery.

    Bookkeeping (attempts, failed list, stats) lives in ``ledger``; every
    time a job becomes queued a Celery task is published for it. Celery
    workers then act as the worker pool, so ``claim`` always returns an
    empty list here and each task claims its own job with ``claim_job``.
    Jobs whose worker died are published again by ``requeue_stale``, which
    the beat schedule runs every ``job_reclaim_interval`` seconds.
    """

    name = "celery"

    def __init__(self, ledger: JobQueue, dispatch: Callable[[str], str] | None = None):
        self.ledger = ledger
        self._dispatch = dispatch or _send_to_celery

    def _publish(self, job_id: str) -> None:
        task_id = self._dispatch(job_id)
        logger.info("job_submitted_to_celery", job_id=job_id, task_id=task_id)

    def put(self, job: DeployJob) -> str:
        self.ledger.put(job)
        self._publish(job.id)
        return job.id

    def claim(self, limit: int = 1) -> list[DeployJob]:
        return []

    def claim_job(self, job_id: str) -> DeployJob | None:
        return self.ledger.claim_job(job_id)

    def ack(self, job_id: str) -> None:
        self.ledger.ack(job_id)

    def fail(self, job_id: str, error: str) -> bool:
        requeued = self.ledger.fail(job_id, error)
        if requeued:
            self._publish(job_id)
        return requeued

    def release(self, job_id: str) -> None:
        self.ledger.release(job_id)
        self._publish(job_id)

    def requeue_stale(self) -> list[str]:
        stale = self.ledger.requeue_stale()
        for job_id in stale:
            self._publish(job_id)
        return stale

    def list_failed(self, limit: int = 100) -> list[FailedJob]:
        return self.ledger.list_failed(limit)

    def retry_failed(self, job_id: str) -> bool:
        retried = self.ledger.retry_failed(job_id)
        if retried:
            self._publish(job_id)
        return retried

    def stats(self) -> dict[str, int]:
        return self.ledger.stats()
