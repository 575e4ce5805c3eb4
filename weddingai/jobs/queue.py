"""
Queue Manager: enqueue, drain, and lifecycle transitions.

This module provides:
- enqueue(): Create a new PENDING job, return its id
- process_jobs(): One drain cycle (claim -> run handler -> transition)
- get_job_status(): Passthrough read for status polling
- cleanup_completed_jobs(): Retention sweep for COMPLETED jobs
- release_stale_jobs(): Recover jobs left in PROCESSING by a dead worker

Drain cycle, per job in the fetched batch (sequential, oldest first):
1. Atomic claim PENDING/RETRYING -> PROCESSING (attempts += 1); lost race -> skip
2. No handler registered -> FAILED immediately, never retried
3. Handler returns -> COMPLETED
4. Handler raises -> RETRYING while attempts < max_attempts, else FAILED
   (PermanentJobError -> FAILED at once)

Transitions only apply while this worker still holds the claim; a claim
released as stale and taken by another worker is left to its new owner.

Failure semantics:
- Handler errors are recorded on the job and logged with the job id;
  they never escape process_jobs() (one bad job must not abort the batch)
- StorageError escapes: no progress is safe without durable storage

The manager keeps no state between cycles beyond its registry; it is meant
to be driven by an external scheduler (management command, cron endpoint).
"""

from __future__ import annotations

import inspect
import logging
from datetime import timedelta
from typing import Any, Awaitable
from uuid import UUID

from asgiref.sync import async_to_sync
from django.utils import timezone

from weddingai.jobs.conf import get_queue_config
from weddingai.jobs.exceptions import HandlerNotRegisteredError, PermanentJobError
from weddingai.jobs.models import Job
from weddingai.jobs.registry import FailureHook, HandlerRegistry, JobHandler
from weddingai.jobs.retry import RetryPolicy
from weddingai.jobs.store import JobStore

logger = logging.getLogger(__name__)


def error_message(exc: BaseException) -> str:
    """Message recorded on the job for a failed attempt."""
    message = str(exc)
    return message if message else exc.__class__.__name__


async def _await_result(result: Awaitable[Any]) -> None:
    await result


class QueueManager:
    """
    Durable, at-least-once, retrying task queue.

    Usage:
        registry = HandlerRegistry()
        registry.register("generate-image", handler)
        queue = QueueManager(registry)

        job_id = queue.enqueue("generate-image", {"image_id": "..."})
        queue.process_jobs(batch_size=10)
        job = queue.get_job_status(job_id)
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        store: JobStore | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.registry = registry
        self.store = store or JobStore()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def register_handler(
        self,
        job_type: str,
        handler: JobHandler,
        on_failure: FailureHook | None = None,
    ) -> None:
        self.registry.register(job_type, handler, on_failure=on_failure)

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
    ) -> str:
        """
        Queue a new job.

        The payload is stored as-is; validating its shape is the producer's job.

        Args:
            job_type: Handler selector
            payload: JSON-serializable data for the handler
            max_attempts: Attempt ceiling (defaults to JOB_QUEUE_MAX_ATTEMPTS)

        Returns:
            job_id as a string

        Raises:
            StorageError: If the job store is unavailable
        """
        if max_attempts is None:
            max_attempts = get_queue_config().max_attempts

        job = self.store.create(job_type, payload, max_attempts)

        logger.info(
            "JOB_ENQUEUED job_id=%s type=%s max_attempts=%d",
            job.id,
            job_type,
            max_attempts,
        )
        return str(job.id)

    def process_jobs(self, batch_size: int | None = None) -> int:
        """
        Run one drain cycle.

        Args:
            batch_size: Max jobs to claim (defaults to JOB_QUEUE_BATCH_SIZE)

        Returns:
            Number of jobs processed, whatever their outcome.

        Raises:
            StorageError: If the job store is unavailable
        """
        if batch_size is None:
            batch_size = get_queue_config().batch_size

        jobs = self.store.find_claimable(batch_size)

        processed_count = 0
        for job in jobs:
            if self._process_job(job):
                processed_count += 1

        if jobs:
            logger.info(
                "Drain cycle finished: fetched=%d processed=%d",
                len(jobs),
                processed_count,
            )
        return processed_count

    def _process_job(self, job: Job) -> bool:
        """Claim and run a single job. Returns False if the claim was lost."""
        claimed = self.store.mark_processing(job.id)
        if claimed is None:
            logger.info(
                "JOB_SKIPPED job_id=%s reason=claimed_elsewhere",
                job.id,
            )
            return False

        logger.info(
            "JOB_CLAIMED job_id=%s type=%s attempt=%d/%d",
            claimed.id,
            claimed.job_type,
            claimed.attempts,
            claimed.max_attempts,
        )

        handler = self.registry.resolve(claimed.job_type)
        if handler is None:
            # Permanent misconfiguration: retrying can never succeed
            error = str(HandlerNotRegisteredError(claimed.job_type))
            self._fail(claimed, error)
            return True

        try:
            self._invoke(handler, claimed.payload)
        except PermanentJobError as e:
            logger.error(
                "Job %s (%s) failed permanently on attempt %d/%d: %s",
                claimed.id,
                claimed.job_type,
                claimed.attempts,
                claimed.max_attempts,
                e,
            )
            self._fail(claimed, error_message(e))
            return True
        except Exception as e:
            logger.exception(
                "Job %s (%s) failed on attempt %d/%d",
                claimed.id,
                claimed.job_type,
                claimed.attempts,
                claimed.max_attempts,
            )
            self._record_failure(claimed, error_message(e))
            return True

        if self.store.mark_completed(claimed):
            logger.info("JOB_COMPLETED job_id=%s type=%s", claimed.id, claimed.job_type)
        else:
            self._log_lost_claim(claimed)
        return True

    def _invoke(self, handler: JobHandler, payload: dict[str, Any]) -> None:
        result = handler(dict(payload))
        if inspect.isawaitable(result):
            async_to_sync(_await_result)(result)

    def _log_lost_claim(self, job: Job) -> None:
        logger.warning(
            "JOB_SKIPPED job_id=%s attempt=%d reason=claim_lost",
            job.id,
            job.attempts,
        )

    def _record_failure(self, job: Job, error: str) -> None:
        """Transition a failed PROCESSING job to RETRYING or FAILED."""
        if not self.retry_policy.should_retry(job.attempts, job.max_attempts):
            self._fail(job, error)
            return

        available_at = self.retry_policy.next_available_at(job.attempts)
        if not self.store.mark_retrying(job, error, available_at):
            self._log_lost_claim(job)
            return

        logger.warning(
            "JOB_RETRYING job_id=%s attempt=%d/%d available_at=%s error=%s",
            job.id,
            job.attempts,
            job.max_attempts,
            available_at.isoformat(),
            error[:200],
        )

    def _fail(self, job: Job, error: str) -> None:
        """Write FAILED for the claimed job and run its failure hook."""
        if not self.store.mark_failed(job, error):
            self._log_lost_claim(job)
            return

        logger.warning(
            "JOB_FAILED job_id=%s attempts=%d error=%s",
            job.id,
            job.attempts,
            error[:200],
        )
        self._run_failure_hook(job, error)

    def _run_failure_hook(self, job: Job, error: str) -> None:
        hook = self.registry.resolve_failure_hook(job.job_type)
        if hook is None:
            return
        try:
            hook(dict(job.payload), error)
        except Exception:
            # The job is already FAILED; a broken hook must not abort the batch
            logger.exception("Failure hook for job %s raised", job.id)

    def get_job_status(self, job_id: UUID | str) -> Job | None:
        """
        Get a job by id.

        Returns None for unknown ids; "not found" is a normal outcome here.
        """
        return self.store.get_by_id(job_id)

    def cleanup_completed_jobs(self, retention_days: int | None = None) -> int:
        """
        Delete COMPLETED jobs older than the retention window.

        FAILED jobs are kept indefinitely for inspection.

        Returns:
            Number of jobs deleted.
        """
        if retention_days is None:
            retention_days = get_queue_config().retention_days

        cutoff = timezone.now() - timedelta(days=retention_days)
        deleted = self.store.delete_completed_older_than(cutoff)

        logger.info(
            "Retention sweep deleted %d completed job(s) older than %d day(s)",
            deleted,
            retention_days,
        )
        return deleted

    def release_stale_jobs(self, stale_after_minutes: int | None = None) -> int:
        """
        Recover jobs stuck in PROCESSING.

        A job whose claim (started_at) is older than the threshold is assumed
        to belong to a dead worker. It moves to RETRYING if attempts remain,
        otherwise to FAILED. The threshold must exceed the longest handler run.

        Returns:
            Number of jobs released.
        """
        if stale_after_minutes is None:
            stale_after_minutes = get_queue_config().stale_after_minutes

        threshold = timezone.now() - timedelta(minutes=stale_after_minutes)

        released_count = 0
        for job in self.store.find_stale(threshold):
            if self.retry_policy.should_retry(job.attempts, job.max_attempts):
                error = f"Released from stale claim (started at {job.started_at.isoformat()})"
                updated = self.store.mark_retrying(job, error)
                if updated:
                    logger.info("Released stale job %s for retry", job.id)
            else:
                error = f"Stale claim after {job.attempts} attempts"
                updated = self.store.mark_failed(job, error)
                if updated:
                    logger.warning("Job %s failed due to stale claim", job.id)
                    self._run_failure_hook(job, error)

            if updated:
                released_count += 1

        return released_count

    def stats(self) -> dict[str, int]:
        """Job counts per status."""
        return self.store.count_by_status()
