"""Celery tasks for deploy job execution."""

import structlog

from site_spine.celery_app import DEPLOY_TASK, RECLAIM_TASK, celery_app
from site_spine.observability import log_context

logger = structlog.get_logger()


@celery_app.task(
    bind=True,
    name=DEPLOY_TASK,
    max_retries=0,  # Retries go through the job queue's attempt budget
    acks_late=True,
)
def run_deploy_job_task(self, job_id: str):
    """
    Celery task that runs one deploy job end to end.

    The job is claimed from the ledger first. A redelivered task takes over
    a job whose previous claim outlived its lease, and does nothing for a
    job that is finished or still held by a live worker.
    """
    from site_spine.context import get_context

    with log_context(job_id=job_id, task_id=self.request.id):
        return _run(get_context(), job_id)


@celery_app.task(name=RECLAIM_TASK)
def reclaim_stale_jobs_task():
    """Requeue and republish jobs whose worker stopped before settling them."""
    from site_spine.context import get_context

    stale = get_context().queue.requeue_stale()
    return {"requeued": len(stale)}


def _run(ctx, job_id: str) -> dict:
    """Claim, run and settle one job."""
    job = ctx.queue.claim_job(job_id)
    if job is None:
        logger.info("celery_task_job_not_claimable")
        return {"job_id": job_id, "status": "skipped"}

    logger.info("celery_task_started", campaign_id=job.campaign_id, attempt=job.attempts)
    try:
        record = ctx.pipeline.run_job(job)
    except Exception as e:
        logger.error("celery_task_failed", error=str(e))
        ctx.queue.fail(job_id, str(e))
        raise

    ctx.queue.ack(job_id)
    logger.info("celery_task_completed", deployment_id=record.id, status=record.status.value)
    return {"job_id": job_id, "deployment_id": record.id, "status": record.status.value}
