"""
Job Store: durable CRUD for Job records.

This module provides the read patterns the queue manager needs:
- create(): insert a PENDING job
- find_claimable(): PENDING/RETRYING jobs, oldest first, bounded batch
- mark_processing(): atomic claim (conditional update, at most one executor)
- mark_completed() / mark_retrying() / mark_failed(): transitions out of PROCESSING,
  applied only while the caller still holds the claim
- get_by_id(): point lookup, None for unknown ids
- delete_completed_older_than(): retention sweep (never touches FAILED)
- find_stale(): PROCESSING jobs whose claim is older than a cutoff

Every status write is an UPDATE filtered on the expected current status
(and, for transitions, on the attempt number of the claim being finished),
so a terminal job is never rewritten and a lost race affects zero rows.

Database failures are re-raised as StorageError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator
from uuid import UUID

from django.db import DatabaseError, transaction
from django.db.models import Count, F
from django.utils import timezone

from weddingai.jobs.exceptions import StorageError
from weddingai.jobs.models import Job, JobStatus

logger = logging.getLogger(__name__)


def _parse_uuid(value: Any) -> UUID | None:
    """Parse a value to UUID, returning None on failure."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Convert database failures into StorageError."""
    try:
        yield
    except DatabaseError as e:
        logger.error("Job store %s failed: %s", operation, str(e))
        raise StorageError(f"Job store {operation} failed: {e}") from e


class JobStore:
    """Transactional accessors for the jobs table."""

    def create(
        self,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int,
    ) -> Job:
        """
        Insert a new job with status PENDING and attempts 0.

        Raises:
            ValueError: If max_attempts < 1
            StorageError: If the database is unavailable
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        with _storage_errors("create"):
            return Job.objects.create(
                job_type=job_type,
                payload=payload,
                max_attempts=max_attempts,
                status=JobStatus.PENDING,
                attempts=0,
            )

    def find_claimable(self, batch_size: int) -> list[Job]:
        """
        Return up to batch_size PENDING/RETRYING jobs, oldest first.

        Read-only: claiming is done per job by mark_processing().
        """
        now = timezone.now()
        with _storage_errors("find_claimable"):
            return list(
                Job.objects
                .filter(
                    status__in=JobStatus.CLAIMABLE,
                    available_at__lte=now,
                )
                .order_by("created_at")[:batch_size]
            )

    def mark_processing(self, job_id: UUID | str) -> Job | None:
        """
        Atomically claim a job.

        Single UPDATE filtered on a claimable status and remaining attempts:
        only one executor can move a given job into PROCESSING.

        Returns:
            The refreshed job (attempts already incremented), or None if the
            job was claimed by someone else or is no longer claimable.
        """
        now = timezone.now()
        with _storage_errors("mark_processing"):
            with transaction.atomic():
                rows_updated = Job.objects.filter(
                    id=job_id,
                    status__in=JobStatus.CLAIMABLE,
                    attempts__lt=F("max_attempts"),
                ).update(
                    status=JobStatus.PROCESSING,
                    started_at=now,
                    attempts=F("attempts") + 1,
                    updated_at=now,
                )

                if rows_updated == 0:
                    return None

                return Job.objects.get(id=job_id)

    def _owned_claim(self, job: Job):
        """
        Rows still held by the claim `job` was read under.

        A claim is identified by its attempt number: once a stale claim is
        released and re-claimed, attempts has moved on and the old executor
        no longer matches.
        """
        return Job.objects.filter(
            id=job.id,
            status=JobStatus.PROCESSING,
            attempts=job.attempts,
        )

    def mark_completed(self, job: Job) -> bool:
        """Move the claimed job to COMPLETED. False if the claim was lost."""
        now = timezone.now()
        with _storage_errors("mark_completed"):
            rows_updated = self._owned_claim(job).update(
                status=JobStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
            )
        return rows_updated > 0

    def mark_retrying(
        self,
        job: Job,
        error: str,
        available_at: datetime | None = None,
    ) -> bool:
        """Move the claimed job to RETRYING, recording the error."""
        now = timezone.now()
        with _storage_errors("mark_retrying"):
            rows_updated = self._owned_claim(job).update(
                status=JobStatus.RETRYING,
                error=error,
                available_at=available_at or now,
                updated_at=now,
            )
        return rows_updated > 0

    def mark_failed(self, job: Job, error: str) -> bool:
        """Move the claimed job to FAILED (terminal), recording the error."""
        now = timezone.now()
        with _storage_errors("mark_failed"):
            rows_updated = self._owned_claim(job).update(
                status=JobStatus.FAILED,
                error=error,
                completed_at=now,
                updated_at=now,
            )
        return rows_updated > 0

    def get_by_id(self, job_id: UUID | str) -> Job | None:
        """Point lookup. Unknown or malformed ids return None."""
        parsed_id = _parse_uuid(job_id)
        if parsed_id is None:
            return None

        with _storage_errors("get_by_id"):
            return Job.objects.filter(id=parsed_id).first()

    def delete_completed_older_than(self, cutoff: datetime) -> int:
        """Delete COMPLETED jobs whose completed_at precedes cutoff."""
        with _storage_errors("delete_completed_older_than"):
            _, deleted_by_model = Job.objects.filter(
                status=JobStatus.COMPLETED,
                completed_at__lt=cutoff,
            ).delete()
        return deleted_by_model.get(Job._meta.label, 0)

    def find_stale(self, started_before: datetime) -> list[Job]:
        """Return PROCESSING jobs claimed before the cutoff."""
        with _storage_errors("find_stale"):
            return list(
                Job.objects
                .filter(
                    status=JobStatus.PROCESSING,
                    started_at__lt=started_before,
                )
                .order_by("started_at")
            )

    def count_by_status(self) -> dict[str, int]:
        """Count jobs per status (every status present, zero if none)."""
        counts = {status: 0 for status, _ in Job.STATUS_CHOICES}
        with _storage_errors("count_by_status"):
            rows = Job.objects.values("status").annotate(count=Count("id"))
            for row in rows:
                counts[row["status"]] = row["count"]
        return counts
