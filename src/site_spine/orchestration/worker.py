"""WorkerPool - thread-based consumer of the job queue."""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable

import structlog

from site_spine.config import get_settings
from site_spine.models import DeployJob
from site_spine.observability import log_context
from site_spine.orchestration.queue import JobQueue

logger = structlog.get_logger()


class WorkerPool:
    """
    Local thread-based worker pool.

    A background thread polls the queue for as many jobs as there are free
    slots and submits each to a thread pool. Every job is owned end to end
    by one thread: the handler runs, then the job is acked, or failed with
    the error message so the queue can re-queue or dead-letter it.
    """

    name = "local"

    def __init__(
        self,
        queue: JobQueue,
        handler: Callable[[DeployJob], Any],
        poll_interval: float | None = None,
        max_concurrent: int | None = None,
    ):
        settings = get_settings()
        self.queue = queue
        self.handler = handler
        self.poll_interval = poll_interval or settings.worker_poll_interval
        self.max_concurrent = max_concurrent or settings.worker_max_concurrent

        self._running = False
        self._poll_thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._active_futures: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._processed = 0
        self._failed = 0

    def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            logger.warning("worker_pool_already_running")
            return

        logger.info(
            "worker_pool_starting",
            queue=self.queue.name,
            poll_interval=self.poll_interval,
            max_concurrent=self.max_concurrent,
        )

        self._running = True
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="deploy-worker"
        )
        self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._poll_thread.start()

    def stop(self) -> None:
        """Stop polling and wait for in-flight jobs to finish."""
        if not self._running:
            return

        logger.info("worker_pool_stopping")
        self._running = False

        if self._poll_thread:
            self._poll_thread.join(timeout=5.0)

        # In-flight jobs run to a terminal state; there is no mid-flight cancel
        if self._executor:
            self._executor.shutdown(wait=True, cancel_futures=False)
            self._executor = None

        self._cleanup_completed_futures()
        logger.info("worker_pool_stopped", processed=self._processed, failed=self._failed)

    def run_until_idle(self, timeout: float | None = None) -> dict[str, int]:
        """
        Drain the queue synchronously and return processed/failed counts.

        Jobs still run concurrently on the pool's threads; this returns once
        the queue has nothing left to claim and nothing is in flight.
        """
        if self._running:
            raise RuntimeError("run_until_idle cannot be used while the poll loop is running")

        deadline = time.monotonic() + timeout if timeout is not None else None
        processed_before, failed_before = self._processed, self._failed

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="deploy-worker"
        ) as executor:
            self._executor = executor
            try:
                while True:
                    self._cleanup_completed_futures()
                    with self._lock:
                        available_slots = self.max_concurrent - len(self._active_futures)
                        active = list(self._active_futures.values())

                    claimed = self._claim_and_process(available_slots) if available_slots > 0 else 0
                    if not claimed and not active:
                        break

                    if deadline is not None and time.monotonic() > deadline:
                        logger.warning("worker_pool_drain_timeout", in_flight=len(active))
                        break

                    if active and not claimed:
                        wait(active, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
            finally:
                self._executor = None

        self._cleanup_completed_futures()
        return {
            "processed": self._processed - processed_before,
            "failed": self._failed - failed_before,
        }

    def health(self) -> dict:
        """Check pool health."""
        with self._lock:
            active_count = len(self._active_futures)
        return {
            "healthy": self._running,
            "message": "running" if self._running else "stopped",
            "active_jobs": active_count,
            "max_concurrent": self.max_concurrent,
            "processed": self._processed,
            "failed": self._failed,
            "queue": self.queue.stats(),
        }

    def _poll_loop(self) -> None:
        """Background loop that polls for and processes jobs."""
        logger.info("poll_loop_started")

        while self._running:
            try:
                self._cleanup_completed_futures()

                with self._lock:
                    available_slots = self.max_concurrent - len(self._active_futures)

                if available_slots > 0:
                    self._claim_and_process(available_slots)

            except Exception as e:
                logger.error("poll_loop_error", error=str(e))

            time.sleep(self.poll_interval)

        logger.info("poll_loop_stopped")

    def _cleanup_completed_futures(self) -> None:
        """Remove completed futures from tracking."""
        with self._lock:
            completed = [job_id for job_id, future in self._active_futures.items() if future.done()]
            for job_id in completed:
                self._active_futures.pop(job_id)

    def _claim_and_process(self, limit: int) -> int:
        """Claim queued jobs and submit them for processing."""
        jobs = self.queue.claim(limit)
        if not jobs:
            return 0

        with self._lock:
            for job in jobs:
                logger.info("submitting_job", job_id=job.id, campaign_id=job.campaign_id)
                self._active_futures[job.id] = self._executor.submit(self._process, job)
        return len(jobs)

    def _process(self, job: DeployJob) -> None:
        """Run one job to completion and report the outcome to the queue."""
        with log_context(job_id=job.id, campaign_id=job.campaign_id, platform=job.platform.value):
            try:
                self.handler(job)
            except Exception as e:
                logger.error("job_failed", error=str(e), error_type=type(e).__name__, attempt=job.attempts)
                self.queue.fail(job.id, str(e))
                with self._lock:
                    self._processed += 1
                    self._failed += 1
                return

            self.queue.ack(job.id)
            with self._lock:
                self._processed += 1
            logger.info("job_completed", attempt=job.attempts)
