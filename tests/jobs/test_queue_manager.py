"""
Queue Manager tests.

Tests for:
A) enqueue - PENDING job, settings default for max_attempts
B) Drain cycle - completion, FIFO order, batch bound, per-job isolation
C) Retry and attempt ceiling
D) At most one executor per claim, stale takeover
E) Unregistered job types and permanent errors
F) Failure hook
G) Status lookup, retention sweep, stale release
H) StorageError propagation
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from weddingai.jobs.exceptions import PermanentJobError, StorageError
from weddingai.jobs.models import Job, JobStatus
from weddingai.jobs.queue import QueueManager, error_message
from weddingai.jobs.retry import RetryPolicy


class FlakyHandler:
    """Fails the first `failures` calls, then succeeds."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")


# =============================================================================
# A) ENQUEUE
# =============================================================================


@pytest.mark.django_db
class TestEnqueue:
    """Test job submission."""

    def test_enqueue_returns_id_of_pending_job(self, queue):
        """enqueue persists a PENDING job and returns its id as a string."""
        job_id = queue.enqueue("generate-image", {"image_id": "abc"})

        assert isinstance(job_id, str)
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.job_type == "generate-image"
        assert job.payload == {"image_id": "abc"}

    def test_enqueue_uses_default_max_attempts(self, queue):
        """max_attempts defaults to JOB_QUEUE_MAX_ATTEMPTS."""
        job_id = queue.enqueue("generate-image", {})

        assert Job.objects.get(id=job_id).max_attempts == 3

    def test_enqueue_custom_max_attempts(self, queue):
        job_id = queue.enqueue("generate-image", {}, max_attempts=5)

        assert Job.objects.get(id=job_id).max_attempts == 5

    def test_enqueue_without_handler_is_allowed(self, queue):
        """Job types are not checked against the registry at enqueue time."""
        job_id = queue.enqueue("not-registered", {})

        assert Job.objects.filter(id=job_id).exists()


# =============================================================================
# B) DRAIN CYCLE
# =============================================================================


@pytest.mark.django_db
class TestProcessJobs:
    """Test a single drain cycle."""

    def test_successful_job_completes(self, queue, caplog):
        """Handler returning normally moves the job to COMPLETED."""
        caplog.set_level(logging.INFO, logger="weddingai")
        handler = MagicMock(return_value=None)
        queue.register_handler("generate-image", handler)
        job_id = queue.enqueue("generate-image", {"image_id": "abc"})

        processed = queue.process_jobs()

        assert processed == 1
        handler.assert_called_once_with({"image_id": "abc"})
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert job.completed_at is not None
        assert "JOB_COMPLETED" in caplog.text

    def test_empty_queue_processes_nothing(self, queue):
        """No claimable jobs means zero processed."""
        assert queue.process_jobs() == 0

    def test_fifo_order(self, queue):
        """Jobs run oldest first."""
        seen = []
        queue.register_handler("t", lambda payload: seen.append(payload["n"]))

        now = timezone.now()
        for n, age in ((1, 5), (2, 10), (3, 1)):
            job_id = queue.enqueue("t", {"n": n})
            Job.objects.filter(id=job_id).update(created_at=now - timedelta(minutes=age))

        queue.process_jobs()

        assert seen == [2, 1, 3]

    def test_batch_size_bounds_cycle(self, queue):
        """At most batch_size jobs are claimed per cycle."""
        queue.register_handler("t", lambda payload: None)
        for _ in range(5):
            queue.enqueue("t", {})

        assert queue.process_jobs(batch_size=2) == 2
        assert Job.objects.filter(status=JobStatus.PENDING).count() == 3

    def test_failing_job_does_not_abort_batch(self, queue):
        """One job's error leaves the rest of the batch untouched."""
        def handler(payload):
            if payload["fail"]:
                raise RuntimeError("bad photo")

        queue.register_handler("t", handler)
        now = timezone.now()
        bad_id = queue.enqueue("t", {"fail": True})
        good_id = queue.enqueue("t", {"fail": False})
        Job.objects.filter(id=bad_id).update(created_at=now - timedelta(minutes=2))
        Job.objects.filter(id=good_id).update(created_at=now - timedelta(minutes=1))

        processed = queue.process_jobs()

        assert processed == 2
        assert Job.objects.get(id=bad_id).status == JobStatus.RETRYING
        assert Job.objects.get(id=good_id).status == JobStatus.COMPLETED

    def test_handler_gets_copy_of_payload(self, queue):
        """Handler mutations do not leak into the stored payload."""
        def handler(payload):
            payload["mutated"] = True

        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {"n": 1})

        queue.process_jobs()

        assert Job.objects.get(id=job_id).payload == {"n": 1}

    def test_async_handler_is_awaited(self, queue):
        """Coroutine handlers run to completion inside the cycle."""
        seen = []

        async def handler(payload):
            seen.append(payload["n"])

        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {"n": 7})

        queue.process_jobs()

        assert seen == [7]
        assert Job.objects.get(id=job_id).status == JobStatus.COMPLETED

    def test_async_handler_failure_is_retried(self, queue):
        """Exceptions from coroutine handlers count as failed attempts."""
        async def handler(payload):
            raise RuntimeError("async boom")

        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {})

        queue.process_jobs()

        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.RETRYING
        assert job.error == "async boom"

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_terminal_jobs_are_left_alone(self, queue, status):
        """Terminal jobs are never picked up again."""
        handler = MagicMock()
        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {})
        Job.objects.filter(id=job_id).update(status=status, attempts=1)

        assert queue.process_jobs() == 0

        handler.assert_not_called()
        job = Job.objects.get(id=job_id)
        assert job.status == status
        assert job.attempts == 1


# =============================================================================
# C) RETRY AND ATTEMPT CEILING
# =============================================================================


@pytest.mark.django_db
class TestRetry:
    """Test failure handling across cycles."""

    def test_failure_moves_to_retrying(self, queue):
        """First failure with attempts remaining -> RETRYING with the error."""
        queue.register_handler("t", FlakyHandler(failures=1))
        job_id = queue.enqueue("t", {})

        queue.process_jobs()

        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.RETRYING
        assert job.attempts == 1
        assert job.error == "transient failure 1"

    def test_retry_then_success(self, queue):
        """Two failures then success: COMPLETED on the third cycle."""
        handler = FlakyHandler(failures=2)
        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {}, max_attempts=3)

        for _ in range(3):
            queue.process_jobs(batch_size=1)

        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 3
        assert handler.calls == 3

    def test_exhausted_attempts_fail(self, queue):
        """A job failing every attempt ends FAILED at max_attempts."""
        handler = FlakyHandler(failures=100)
        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {}, max_attempts=3)

        for _ in range(5):
            queue.process_jobs()

        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.error == "transient failure 3"
        assert handler.calls == 3

    def test_single_attempt_job_fails_immediately(self, queue):
        """max_attempts=1 never retries."""
        queue.register_handler("t", FlakyHandler(failures=1))
        job_id = queue.enqueue("t", {}, max_attempts=1)

        queue.process_jobs()

        assert Job.objects.get(id=job_id).status == JobStatus.FAILED

    def test_backoff_delays_next_claim(self, registry):
        """With backoff configured, a RETRYING job waits out its delay."""
        queue = QueueManager(registry, retry_policy=RetryPolicy(base_seconds=60))
        handler = FlakyHandler(failures=1)
        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {})

        queue.process_jobs()
        assert queue.process_jobs() == 0
        assert handler.calls == 1

        Job.objects.filter(id=job_id).update(available_at=timezone.now() - timedelta(seconds=1))
        queue.process_jobs()

        assert Job.objects.get(id=job_id).status == JobStatus.COMPLETED

    def test_empty_exception_message_uses_class_name(self):
        """Errors without a message are recorded by exception type."""
        assert error_message(RuntimeError()) == "RuntimeError"
        assert error_message(ValueError("bad")) == "bad"


# =============================================================================
# D) AT MOST ONE EXECUTOR
# =============================================================================


@pytest.mark.django_db
class TestSingleExecution:
    """Overlapping cycles never run the same claim twice."""

    def test_overlapping_cycles_run_handler_once(self, registry):
        """Two managers fetching the same batch: only one wins each claim."""
        handler = MagicMock(return_value=None)
        registry.register("t", handler)
        worker_a = QueueManager(registry)
        worker_b = QueueManager(registry)
        job_id = worker_a.enqueue("t", {})

        # Both workers see the job as claimable before either claims it
        snapshot = worker_a.store.find_claimable(10)

        with patch.object(worker_a.store, "find_claimable", return_value=snapshot), \
                patch.object(worker_b.store, "find_claimable", return_value=snapshot):
            processed_a = worker_a.process_jobs()
            processed_b = worker_b.process_jobs()

        assert processed_a + processed_b == 1
        handler.assert_called_once()
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1

    def test_lost_claim_is_logged(self, queue, caplog):
        """A job claimed elsewhere is skipped with JOB_SKIPPED."""
        caplog.set_level(logging.INFO, logger="weddingai")
        queue.register_handler("t", lambda payload: None)
        queue.enqueue("t", {})
        snapshot = queue.store.find_claimable(10)
        queue.store.mark_processing(snapshot[0].id)

        with patch.object(queue.store, "find_claimable", return_value=snapshot):
            assert queue.process_jobs() == 0

        assert "JOB_SKIPPED" in caplog.text

    def _take_over(self, queue, job_id):
        """Release the running claim as stale and let a second worker claim it."""
        Job.objects.filter(id=job_id).update(started_at=timezone.now() - timedelta(minutes=30))
        assert queue.release_stale_jobs(stale_after_minutes=15) == 1
        assert queue.store.mark_processing(job_id) is not None

    def test_failure_after_takeover_leaves_new_claim_alone(self, queue, caplog):
        """The first worker's error cannot move the job out of the second claim."""
        caplog.set_level(logging.INFO, logger="weddingai")
        hook = MagicMock()
        job_ids = []

        def slow_handler(payload):
            self._take_over(queue, job_ids[0])
            raise RuntimeError("worker A gave up")

        queue.register_handler("t", slow_handler, on_failure=hook)
        job_ids.append(queue.enqueue("t", {}, max_attempts=3))

        queue.process_jobs()

        job = Job.objects.get(id=job_ids[0])
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 2
        assert "worker A gave up" not in (job.error or "")
        hook.assert_not_called()
        assert "reason=claim_lost" in caplog.text
        assert "JOB_RETRYING" not in caplog.text

    def test_final_failure_after_takeover_skips_hook(self, queue):
        """Even on what A believes is its last attempt, B's claim wins."""
        hook = MagicMock()
        job_ids = []

        def slow_handler(payload):
            Job.objects.filter(id=job_ids[0]).update(max_attempts=3)
            self._take_over(queue, job_ids[0])
            raise RuntimeError("worker A gave up")

        queue.register_handler("t", slow_handler, on_failure=hook)
        job_ids.append(queue.enqueue("t", {}, max_attempts=1))

        queue.process_jobs()

        job = Job.objects.get(id=job_ids[0])
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 2
        hook.assert_not_called()

    def test_success_after_takeover_is_not_reported_completed(self, queue, caplog):
        """JOB_COMPLETED is only logged when the COMPLETED write lands."""
        caplog.set_level(logging.INFO, logger="weddingai")
        job_ids = []

        def slow_handler(payload):
            self._take_over(queue, job_ids[0])

        queue.register_handler("t", slow_handler)
        job_ids.append(queue.enqueue("t", {}))

        queue.process_jobs()

        job = Job.objects.get(id=job_ids[0])
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 2
        assert "JOB_COMPLETED" not in caplog.text
        assert "reason=claim_lost" in caplog.text


# =============================================================================
# E) UNREGISTERED JOB TYPES
# =============================================================================


@pytest.mark.django_db
class TestUnregisteredType:
    """Jobs without a handler fail permanently."""

    def test_unknown_type_fails_without_retry(self, queue):
        """No handler: FAILED after a single claim, with a descriptive error."""
        job_id = queue.enqueue("unknown-type", {}, max_attempts=3)

        processed = queue.process_jobs()

        assert processed == 1
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert job.error == "No handler registered for job type: unknown-type"

    def test_unknown_type_is_not_picked_up_again(self, queue):
        """The FAILED job stays failed on later cycles."""
        job_id = queue.enqueue("unknown-type", {})

        queue.process_jobs()
        queue.process_jobs()

        job = Job.objects.get(id=job_id)
        assert job.attempts == 1

    def test_permanent_error_fails_without_retry(self, queue):
        """PermanentJobError skips the remaining attempts and runs the hook."""
        hook = MagicMock()

        def handler(payload):
            raise PermanentJobError("invalid payload: image_id")

        queue.register_handler("t", handler, on_failure=hook)
        job_id = queue.enqueue("t", {"image_id": "x"}, max_attempts=3)

        assert queue.process_jobs() == 1

        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert job.error == "invalid payload: image_id"
        assert job.completed_at is not None
        hook.assert_called_once_with({"image_id": "x"}, "invalid payload: image_id")


# =============================================================================
# F) FAILURE HOOK
# =============================================================================


@pytest.mark.django_db
class TestFailureHook:
    """on_failure runs once, when a job becomes FAILED."""

    def test_hook_runs_on_final_failure_only(self, queue):
        """Hook is not called for retried attempts."""
        hook = MagicMock()
        queue.register_handler("t", FlakyHandler(failures=100), on_failure=hook)
        queue.enqueue("t", {"image_id": "abc"}, max_attempts=2)

        queue.process_jobs()
        hook.assert_not_called()

        queue.process_jobs()
        hook.assert_called_once_with({"image_id": "abc"}, "transient failure 2")

    def test_hook_not_called_on_success(self, queue):
        hook = MagicMock()
        queue.register_handler("t", lambda payload: None, on_failure=hook)
        queue.enqueue("t", {})

        queue.process_jobs()

        hook.assert_not_called()

    def test_broken_hook_does_not_abort_cycle(self, queue):
        """Hook errors are logged; the job stays FAILED and the batch continues."""
        hook = MagicMock(side_effect=RuntimeError("hook broke"))
        queue.register_handler("t", FlakyHandler(failures=1), on_failure=hook)
        now = timezone.now()
        failing_id = queue.enqueue("t", {}, max_attempts=1)
        next_id = queue.enqueue("t", {}, max_attempts=1)
        Job.objects.filter(id=failing_id).update(created_at=now - timedelta(minutes=2))
        Job.objects.filter(id=next_id).update(created_at=now - timedelta(minutes=1))

        processed = queue.process_jobs()

        assert processed == 2
        assert Job.objects.get(id=failing_id).status == JobStatus.FAILED
        assert Job.objects.get(id=next_id).status == JobStatus.COMPLETED


# =============================================================================
# G) STATUS, RETENTION, STALE RELEASE
# =============================================================================


@pytest.mark.django_db
class TestGetJobStatus:
    """Test status lookups."""

    def test_known_job(self, queue):
        job_id = queue.enqueue("t", {})

        job = queue.get_job_status(job_id)

        assert str(job.id) == job_id
        assert job.status == JobStatus.PENDING

    def test_unknown_job_returns_none(self, queue):
        """Unknown ids are a normal outcome, not an error."""
        assert queue.get_job_status(uuid.uuid4()) is None
        assert queue.get_job_status("garbage") is None


@pytest.mark.django_db
class TestCleanupCompletedJobs:
    """Test the retention sweep."""

    def test_deletes_only_old_completed(self, queue):
        """Old COMPLETED jobs go; recent ones and FAILED ones stay."""
        now = timezone.now()
        old_id = queue.enqueue("t", {})
        recent_id = queue.enqueue("t", {})
        failed_id = queue.enqueue("t", {})
        Job.objects.filter(id=old_id).update(
            status=JobStatus.COMPLETED, completed_at=now - timedelta(days=31)
        )
        Job.objects.filter(id=recent_id).update(
            status=JobStatus.COMPLETED, completed_at=now - timedelta(days=1)
        )
        Job.objects.filter(id=failed_id).update(
            status=JobStatus.FAILED, completed_at=now - timedelta(days=90)
        )

        deleted = queue.cleanup_completed_jobs()

        assert deleted == 1
        assert not Job.objects.filter(id=old_id).exists()
        assert Job.objects.filter(id=recent_id).exists()
        assert Job.objects.filter(id=failed_id).exists()

    def test_custom_retention(self, queue):
        job_id = queue.enqueue("t", {})
        Job.objects.filter(id=job_id).update(
            status=JobStatus.COMPLETED, completed_at=timezone.now() - timedelta(days=3)
        )

        assert queue.cleanup_completed_jobs(retention_days=7) == 0
        assert queue.cleanup_completed_jobs(retention_days=2) == 1

    def test_pending_jobs_never_deleted(self, queue):
        queue.enqueue("t", {})

        assert queue.cleanup_completed_jobs(retention_days=0) == 0
        assert Job.objects.count() == 1


@pytest.mark.django_db
class TestReleaseStaleJobs:
    """Test recovery of jobs abandoned in PROCESSING."""

    def _stale(self, queue, attempts, max_attempts=3, minutes=30):
        job_id = queue.enqueue("t", {"image_id": "abc"}, max_attempts=max_attempts)
        Job.objects.filter(id=job_id).update(
            status=JobStatus.PROCESSING,
            attempts=attempts,
            started_at=timezone.now() - timedelta(minutes=minutes),
        )
        return job_id

    def test_stale_job_with_attempts_left_retries(self, queue):
        """Stale claim with attempts remaining -> RETRYING."""
        job_id = self._stale(queue, attempts=1)

        released = queue.release_stale_jobs()

        assert released == 1
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.RETRYING
        assert "stale claim" in job.error

    def test_stale_job_out_of_attempts_fails(self, queue):
        """Stale claim on the last attempt -> FAILED, hook runs."""
        hook = MagicMock()
        queue.register_handler("t", lambda payload: None, on_failure=hook)
        job_id = self._stale(queue, attempts=3, max_attempts=3)

        released = queue.release_stale_jobs()

        assert released == 1
        assert Job.objects.get(id=job_id).status == JobStatus.FAILED
        hook.assert_called_once()

    def test_recent_claim_is_not_stale(self, queue):
        """Claims younger than the threshold are left running."""
        job_id = self._stale(queue, attempts=1, minutes=2)

        assert queue.release_stale_jobs(stale_after_minutes=15) == 0
        assert Job.objects.get(id=job_id).status == JobStatus.PROCESSING

    def test_released_job_is_claimable_again(self, queue):
        """After release, the next cycle picks the job up."""
        handler = MagicMock()
        queue.register_handler("t", handler)
        job_id = self._stale(queue, attempts=1)

        queue.release_stale_jobs()
        queue.process_jobs()

        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 2
        handler.assert_called_once()


# =============================================================================
# H) STORAGE ERRORS
# =============================================================================


@pytest.mark.django_db
class TestStorageErrorPropagation:
    """Storage failures escape to the caller instead of becoming job state."""

    def test_enqueue_propagates(self, queue):
        with patch.object(queue.store, "create", side_effect=StorageError("db down")):
            with pytest.raises(StorageError):
                queue.enqueue("t", {})

    def test_process_jobs_propagates(self, queue):
        with patch.object(queue.store, "find_claimable", side_effect=StorageError("db down")):
            with pytest.raises(StorageError):
                queue.process_jobs()

    def test_claim_failure_propagates(self, queue):
        """A storage failure mid-cycle is not recorded as a handler failure."""
        handler = MagicMock()
        queue.register_handler("t", handler)
        job_id = queue.enqueue("t", {})

        with patch.object(queue.store, "mark_processing", side_effect=StorageError("db down")):
            with pytest.raises(StorageError):
                queue.process_jobs()

        handler.assert_not_called()
        assert Job.objects.get(id=job_id).status == JobStatus.PENDING


class TestStats:
    def test_stats_delegates_to_store(self, registry):
        store = MagicMock()
        store.count_by_status.return_value = {"pending": 2}
        queue = QueueManager(registry, store=store, retry_policy=RetryPolicy())

        assert queue.stats() == {"pending": 2}
