"""
Retry policy for failed job attempts.

- A failed attempt is retried while attempts < max_attempts
- Backoff delay: base_seconds * multiplier ** (attempts - 1), capped at max_delay_seconds
- base_seconds = 0 (default) makes a RETRYING job eligible on the next drain cycle
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from django.utils import timezone

from weddingai.jobs.conf import get_queue_config

# Upper bound on a single backoff delay (seconds)
MAX_DELAY_SECONDS = 3600


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether a failed attempt is retried, and when."""

    base_seconds: int = 0
    multiplier: int = 2
    max_delay_seconds: int = MAX_DELAY_SECONDS

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        config = get_queue_config()
        return cls(
            base_seconds=config.backoff_base_seconds,
            multiplier=config.backoff_multiplier,
        )

    def should_retry(self, attempts: int, max_attempts: int) -> bool:
        """True if another attempt is allowed after `attempts` failures."""
        return attempts < max_attempts

    def delay_for(self, attempts: int) -> timedelta:
        """Backoff delay after the given (1-based) failed attempt."""
        if self.base_seconds <= 0:
            return timedelta(0)
        exponent = max(attempts - 1, 0)
        seconds = min(self.base_seconds * (self.multiplier ** exponent), self.max_delay_seconds)
        return timedelta(seconds=seconds)

    def next_available_at(self, attempts: int, now: datetime | None = None) -> datetime:
        """When a job that just failed its `attempts`-th attempt becomes claimable again."""
        if now is None:
            now = timezone.now()
        return now + self.delay_for(attempts)
