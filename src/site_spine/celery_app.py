"""Celery application for the ``celery`` worker backend."""

from celery import Celery

from site_spine.config import Settings, get_settings

DEPLOY_TASK = "site_spine.tasks.run_deploy_job"
RECLAIM_TASK = "site_spine.tasks.reclaim_stale_jobs"


def create_celery_app(settings: Settings | None = None) -> Celery:
    """
    Build the Celery app from settings.

    Deploy tasks are acked only after they return, and a task whose worker
    process dies is handed back to the broker. The job ledger decides
    whether the redelivered task still has work to do. Beat runs the stale
    claim reaper so a job is never stranded when the broker does not
    redeliver.
    """
    settings = settings or get_settings()

    app = Celery("site_spine", broker=settings.redis_url, include=["site_spine.tasks"])
    app.conf.update(
        task_default_queue=settings.celery_task_default_queue,
        task_acks_late=settings.celery_task_acks_late,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=settings.celery_worker_prefetch_multiplier,
        worker_concurrency=settings.worker_max_concurrent,
        task_serializer="json",
        accept_content=["json"],
        # Outcomes live on deployment records, not in a result backend
        task_ignore_result=True,
        timezone="UTC",
        enable_utc=True,
        broker_transport_options={"visibility_timeout": int(settings.job_lease_seconds)},
        beat_schedule={
            "reclaim-stale-jobs": {
                "task": RECLAIM_TASK,
                "schedule": settings.job_reclaim_interval,
            },
        },
    )
    return app


celery_app = create_celery_app()
