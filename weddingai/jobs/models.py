"""
Job: durable unit of deferred work.

Job lifecycle:
    PENDING -> PROCESSING -> COMPLETED | RETRYING | FAILED
    RETRYING -> PROCESSING (re-claimed on a later drain cycle)

CRITICAL INVARIANTS:
- Status is only written through JobStore, always as a conditional update
- attempts never exceeds max_attempts
- COMPLETED and FAILED are terminal; no claim may act on them
- FAILED jobs are never removed by the retention sweep
"""

from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone


class JobStatus:
    """
    Status constants for Job.

    Terminal states: COMPLETED, FAILED
    Claimable states: PENDING, RETRYING
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    CLAIMABLE = (PENDING, RETRYING)
    TERMINAL = (COMPLETED, FAILED)


class Job(models.Model):
    """
    Durable job record.

    Job leasing:
    - Claim is an atomic conditional update PENDING/RETRYING -> PROCESSING
    - started_at marks the claim; PROCESSING jobs with an old started_at
      are reclaimed by the stale sweep

    Retry policy:
    - max_attempts default 3
    - available_at delays a RETRYING job when backoff is configured
    - error keeps the last failure message
    """

    STATUS_CHOICES = [
        (JobStatus.PENDING, "Pending"),
        (JobStatus.PROCESSING, "Processing"),
        (JobStatus.COMPLETED, "Completed"),
        (JobStatus.FAILED, "Failed"),
        (JobStatus.RETRYING, "Retrying"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_type = models.CharField(max_length=100)
    payload = models.JSONField(default=dict)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=JobStatus.PENDING,
        db_index=True,
    )

    # Retry tracking
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=3)
    error = models.TextField(null=True, blank=True)

    # Scheduling
    available_at = models.DateTimeField(default=timezone.now)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        app_label = "jobs"
        db_table = "jobs_job"
        indexes = [
            # Drain cycle: claimable jobs, oldest first
            models.Index(
                fields=["status", "created_at"],
                name="idx_job_status_created",
            ),
            # Retention sweep
            models.Index(
                fields=["status", "completed_at"],
                name="idx_job_status_completed",
            ),
        ]

    def __str__(self) -> str:
        return f"Job {self.id} {self.job_type} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def to_dict(self) -> dict:
        """Serialize for status polling responses."""
        return {
            "id": str(self.id),
            "type": self.job_type,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
