"""
Job queue configuration readers.

All values come from Django settings (see weddingai/settings.py) with
safe defaults, so the queue works in any settings module.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETENTION_DAYS = 30
DEFAULT_STALE_AFTER_MINUTES = 15


@dataclass(frozen=True)
class QueueConfig:
    """Snapshot of job queue settings."""

    batch_size: int
    max_attempts: int
    retention_days: int
    stale_after_minutes: int
    backoff_base_seconds: int
    backoff_multiplier: int
    cron_token: str


def get_queue_config() -> QueueConfig:
    """Read the job queue settings."""
    return QueueConfig(
        batch_size=getattr(settings, "JOB_QUEUE_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        max_attempts=getattr(settings, "JOB_QUEUE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        retention_days=getattr(settings, "JOB_QUEUE_RETENTION_DAYS", DEFAULT_RETENTION_DAYS),
        stale_after_minutes=getattr(
            settings, "JOB_QUEUE_STALE_AFTER_MINUTES", DEFAULT_STALE_AFTER_MINUTES
        ),
        backoff_base_seconds=getattr(settings, "JOB_QUEUE_BACKOFF_BASE_SECONDS", 0),
        backoff_multiplier=getattr(settings, "JOB_QUEUE_BACKOFF_MULTIPLIER", 2),
        cron_token=getattr(settings, "JOB_QUEUE_CRON_TOKEN", "") or "",
    )
