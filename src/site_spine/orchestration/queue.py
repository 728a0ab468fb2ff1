"""Job queue interface and the in-process implementation."""

import copy
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from site_spine.config import get_settings
from site_spine.models import DeployJob, utcnow

logger = structlog.get_logger()


@dataclass
class FailedJob:
    """A job that exhausted its attempts and sits in the dead-letter list."""

    job: DeployJob
    error_message: str
    failed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job.id,
            "campaign_id": self.job.campaign_id,
            "slug": self.job.slug,
            "platform": self.job.platform.value,
            "attempts": self.job.attempts,
            "error_message": self.error_message,
            "failed_at": self.failed_at.isoformat(),
        }


class JobQueue(ABC):
    """
    Durable FIFO of deploy jobs with at-least-once delivery.

    A claimed job is in flight until it is acked, failed or released and is
    never handed to a second consumer in the meantime. ``claim`` counts an
    attempt; ``fail`` re-queues while attempts remain, otherwise the job moves
    to the failed list where an operator can retry it explicitly.

    A claim is a lease of ``lease_seconds``. A job still in flight after its
    lease is treated as abandoned by a dead worker: ``claim`` puts such jobs
    back before claiming, ``claim_job`` takes one over directly, and
    ``requeue_stale`` returns them all to the queue.
    """

    name: str = "base"

    @abstractmethod
    def put(self, job: DeployJob) -> str: ...

    @abstractmethod
    def claim(self, limit: int = 1) -> list[DeployJob]: ...

    @abstractmethod
    def claim_job(self, job_id: str) -> DeployJob | None:
        """Claim one specific job if it is queued or its lease has expired, else None."""
        ...

    @abstractmethod
    def ack(self, job_id: str) -> None: ...

    @abstractmethod
    def fail(self, job_id: str, error: str) -> bool:
        """Record a failed attempt. Returns True if the job was re-queued."""
        ...

    @abstractmethod
    def release(self, job_id: str) -> None:
        """Return an in-flight job to the queue without counting the attempt."""
        ...

    @abstractmethod
    def requeue_stale(self) -> list[str]:
        """Put in-flight jobs whose lease expired back on the queue. Returns their ids."""
        ...

    @abstractmethod
    def list_failed(self, limit: int = 100) -> list[FailedJob]: ...

    @abstractmethod
    def retry_failed(self, job_id: str) -> bool: ...

    @abstractmethod
    def stats(self) -> dict[str, int]: ...


class InMemoryJobQueue(JobQueue):
    """Lock-protected queue for tests and single-process runs."""

    name = "memory"

    def __init__(self, max_attempts: int | None = None, lease_seconds: float | None = None):
        settings = get_settings()
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.lease_seconds = settings.job_lease_seconds if lease_seconds is None else lease_seconds
        self._queued: deque[DeployJob] = deque()
        self._in_flight: dict[str, DeployJob] = {}
        self._claimed_at: dict[str, float] = {}
        self._failed: dict[str, FailedJob] = {}
        self._done = 0
        self._lock = threading.Lock()

    def put(self, job: DeployJob) -> str:
        with self._lock:
            self._queued.append(copy.deepcopy(job))
        logger.debug("job_queued", job_id=job.id, campaign_id=job.campaign_id)
        return job.id

    # Helpers below expect the lock to be held

    def _start(self, job: DeployJob) -> DeployJob:
        job.attempts += 1
        self._in_flight[job.id] = job
        self._claimed_at[job.id] = time.monotonic()
        return copy.deepcopy(job)

    def _settle(self, job_id: str) -> DeployJob | None:
        self._claimed_at.pop(job_id, None)
        return self._in_flight.pop(job_id, None)

    def _lease_expired(self, job_id: str, now: float) -> bool:
        return now - self._claimed_at[job_id] >= self.lease_seconds

    def _take_back_stale(self) -> list[str]:
        now = time.monotonic()
        stale = [job_id for job_id in self._in_flight if self._lease_expired(job_id, now)]
        # Abandoned jobs go ahead of everything queued after them
        self._queued.extendleft(self._settle(job_id) for job_id in reversed(stale))
        return stale

    def _log_stale(self, stale: list[str]) -> None:
        if stale:
            logger.warning("stale_jobs_requeued", job_ids=stale, lease_seconds=self.lease_seconds)

    def claim(self, limit: int = 1) -> list[DeployJob]:
        claimed = []
        with self._lock:
            stale = self._take_back_stale()
            while self._queued and len(claimed) < limit:
                claimed.append(self._start(self._queued.popleft()))
        self._log_stale(stale)
        return claimed

    def claim_job(self, job_id: str) -> DeployJob | None:
        with self._lock:
            for job in self._queued:
                if job.id == job_id:
                    self._queued.remove(job)
                    return self._start(job)

            if job_id not in self._in_flight or not self._lease_expired(job_id, time.monotonic()):
                return None
            claimed = self._start(self._settle(job_id))

        logger.warning("stale_job_taken_over", job_id=job_id, attempt=claimed.attempts)
        return claimed

    def ack(self, job_id: str) -> None:
        with self._lock:
            if self._settle(job_id) is not None:
                self._done += 1

    def fail(self, job_id: str, error: str) -> bool:
        with self._lock:
            job = self._settle(job_id)
            if job is None:
                logger.warning("fail_unknown_job", job_id=job_id)
                return False

            if job.attempts < self.max_attempts:
                self._queued.append(job)
                requeued = True
            else:
                self._failed[job.id] = FailedJob(job=job, error_message=error)
                requeued = False

        logger.info(
            "job_requeued" if requeued else "job_dead_lettered",
            job_id=job_id,
            attempts=job.attempts,
            max_attempts=self.max_attempts,
        )
        return requeued

    def release(self, job_id: str) -> None:
        with self._lock:
            job = self._settle(job_id)
            if job is not None:
                job.attempts = max(0, job.attempts - 1)
                self._queued.appendleft(job)

    def requeue_stale(self) -> list[str]:
        with self._lock:
            stale = self._take_back_stale()
        self._log_stale(stale)
        return stale

    def list_failed(self, limit: int = 100) -> list[FailedJob]:
        with self._lock:
            items = sorted(self._failed.values(), key=lambda f: f.failed_at, reverse=True)
        return copy.deepcopy(items[:limit])

    def retry_failed(self, job_id: str) -> bool:
        with self._lock:
            failed = self._failed.pop(job_id, None)
            if failed is None:
                return False
            job = failed.job
            job.attempts = 0
            self._queued.append(job)
        logger.info("dlq_retry_created", job_id=job_id)
        return True

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "queued": len(self._queued),
                "running": len(self._in_flight),
                "done": self._done,
                "failed": len(self._failed),
            }
