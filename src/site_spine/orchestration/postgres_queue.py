"""Durable job queue on the ``deploy_jobs`` table."""

import json

import structlog

from site_spine.config import get_settings
from site_spine.db import get_connection
from site_spine.models import DeployJob
from site_spine.orchestration.queue import FailedJob, JobQueue

logger = structlog.get_logger()

LEASE_EXPIRED = "claimed_at <= NOW() - make_interval(secs => %s::double precision)"


def _job(row: dict) -> DeployJob:
    payload = row["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    job = DeployJob.from_dict(payload)
    job.attempts = row["attempts"]
    return job


class PostgresJobQueue(JobQueue):
    """
    Job queue backed by PostgreSQL.

    Consumers claim with ``FOR UPDATE SKIP LOCKED`` so concurrent workers,
    in one process or many, never receive the same queued row. ``claimed_at``
    is the lease start; rows still ``running`` ``lease_seconds`` later are
    claimable again.
    """

    name = "postgres"

    def __init__(self, max_attempts: int | None = None, lease_seconds: float | None = None):
        settings = get_settings()
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.lease_seconds = settings.job_lease_seconds if lease_seconds is None else lease_seconds

    def put(self, job: DeployJob) -> str:
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO deploy_jobs (id, campaign_id, payload, status, attempts)
                VALUES (%s, %s, %s, 'queued', %s)
                """,
                (job.id, job.campaign_id, json.dumps(job.to_dict()), job.attempts),
            )
            conn.commit()
        logger.debug("job_queued", job_id=job.id, campaign_id=job.campaign_id)
        return job.id

    def _take_back_stale(self, conn) -> list[str]:
        result = conn.execute(
            f"""
            UPDATE deploy_jobs
            SET status = 'queued', claimed_at = NULL
            WHERE status = 'running' AND {LEASE_EXPIRED}
            RETURNING id
            """,
            (self.lease_seconds,),
        )
        stale = [row["id"] for row in result.fetchall()]
        if stale:
            logger.warning("stale_jobs_requeued", job_ids=stale, lease_seconds=self.lease_seconds)
        return stale

    def claim(self, limit: int = 1) -> list[DeployJob]:
        with get_connection() as conn:
            self._take_back_stale(conn)
            result = conn.execute(
                """
                UPDATE deploy_jobs
                SET status = 'running', attempts = attempts + 1, claimed_at = NOW()
                WHERE id IN (
                    SELECT id FROM deploy_jobs
                    WHERE status = 'queued'
                    ORDER BY created_at
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id, payload, attempts, created_at
                """,
                (limit,),
            )
            rows = sorted(result.fetchall(), key=lambda r: r["created_at"])
            conn.commit()
        return [_job(row) for row in rows]

    def claim_job(self, job_id: str) -> DeployJob | None:
        with get_connection() as conn:
            result = conn.execute(
                f"""
                UPDATE deploy_jobs
                SET status = 'running', attempts = attempts + 1, claimed_at = NOW()
                WHERE id = (
                    SELECT id FROM deploy_jobs
                    WHERE id = %s
                      AND (status = 'queued' OR (status = 'running' AND {LEASE_EXPIRED}))
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id, payload, attempts
                """,
                (job_id, self.lease_seconds),
            )
            row = result.fetchone()
            conn.commit()
        return _job(row) if row else None

    def ack(self, job_id: str) -> None:
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE deploy_jobs
                SET status = 'done', completed_at = NOW(), error_message = NULL
                WHERE id = %s AND status = 'running'
                """,
                (job_id,),
            )
            conn.commit()

    def fail(self, job_id: str, error: str) -> bool:
        with get_connection() as conn:
            result = conn.execute(
                """
                UPDATE deploy_jobs
                SET status = CASE WHEN attempts < %s THEN 'queued' ELSE 'failed' END,
                    error_message = %s,
                    completed_at = CASE WHEN attempts < %s THEN NULL ELSE NOW() END
                WHERE id = %s AND status = 'running'
                RETURNING status, attempts
                """,
                (self.max_attempts, error, self.max_attempts, job_id),
            )
            row = result.fetchone()
            conn.commit()

        if row is None:
            logger.warning("fail_unknown_job", job_id=job_id)
            return False

        requeued = row["status"] == "queued"
        logger.info(
            "job_requeued" if requeued else "job_dead_lettered",
            job_id=job_id,
            attempts=row["attempts"],
            max_attempts=self.max_attempts,
        )
        return requeued

    def release(self, job_id: str) -> None:
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE deploy_jobs
                SET status = 'queued', attempts = GREATEST(attempts - 1, 0), claimed_at = NULL
                WHERE id = %s AND status = 'running'
                """,
                (job_id,),
            )
            conn.commit()

    def requeue_stale(self) -> list[str]:
        with get_connection() as conn:
            stale = self._take_back_stale(conn)
            conn.commit()
        return stale

    def list_failed(self, limit: int = 100) -> list[FailedJob]:
        with get_connection() as conn:
            result = conn.execute(
                """
                SELECT id, payload, attempts, error_message, completed_at
                FROM deploy_jobs
                WHERE status = 'failed'
                ORDER BY completed_at DESC
                LIMIT %s
                """,
                (limit,),
            )
            return [
                FailedJob(
                    job=_job(row),
                    error_message=row["error_message"] or "",
                    failed_at=row["completed_at"],
                )
                for row in result.fetchall()
            ]

    def retry_failed(self, job_id: str) -> bool:
        with get_connection() as conn:
            result = conn.execute(
                """
                UPDATE deploy_jobs
                SET status = 'queued', attempts = 0, error_message = NULL,
                    claimed_at = NULL, completed_at = NULL
                WHERE id = %s AND status = 'failed'
                RETURNING id
                """,
                (job_id,),
            )
            retried = result.fetchone() is not None
            conn.commit()

        if retried:
            logger.info("dlq_retry_created", job_id=job_id)
        else:
            logger.warning("dlq_retry_not_found", job_id=job_id)
        return retried

    def stats(self) -> dict[str, int]:
        counts = {"queued": 0, "running": 0, "done": 0, "failed": 0}
        with get_connection() as conn:
            result = conn.execute(
                "SELECT status, COUNT(*) AS count FROM deploy_jobs GROUP BY status"
            )
            for row in result.fetchall():
                counts[row["status"]] = row["count"]
        return counts
