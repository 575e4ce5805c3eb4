"""
Request timing middleware for API and internal paths.

Features:
- Logs method, path, status code, total ms, response bytes
- DB query count + total DB time (guarded by WEDDINGAI_LOG_DB_TIMING=1)
- Poll storm detection: warns if a path exceeds threshold (>20/10s or >120/60s).
  Clients poll /api/images/:id/status while a generation job runs, so a
  runaway poll loop shows up here first.
- Response headers: X-Response-Bytes, X-Request-Time-Ms

Only logs paths starting with /api/ or /internal/ to avoid noise from
static files, admin, etc.

Usage:
    Add to MIDDLEWARE in settings.py:
    "weddingai.middleware.timing.RequestTimingMiddleware"

    Enable DB timing (optional):
    export WEDDINGAI_LOG_DB_TIMING=1
"""

import logging
import os
import re
import time
from collections import defaultdict
from threading import Lock
from typing import Callable

from django.http import HttpRequest, HttpResponse

logger = logging.getLogger("weddingai.timing")

TIMED_PREFIXES = ("/api/", "/internal/")

# Storm detection thresholds
STORM_THRESHOLD_10S = int(os.environ.get("WEDDINGAI_STORM_THRESHOLD_10S", "20"))
STORM_THRESHOLD_60S = int(os.environ.get("WEDDINGAI_STORM_THRESHOLD_60S", "120"))


class RollingCounter:
    """Thread-safe rolling counter for request rate tracking."""

    def __init__(self):
        self._timestamps: list[float] = []
        self._lock = Lock()

    def record(self, now: float) -> tuple[int, int]:
        """Record a request and return (count_10s, count_60s)."""
        with self._lock:
            self._timestamps.append(now)

            # Prune entries older than the widest window
            cutoff_60s = now - 60
            self._timestamps = [t for t in self._timestamps if t > cutoff_60s]

            cutoff_10s = now - 10
            count_10s = sum(1 for t in self._timestamps if t > cutoff_10s)
            count_60s = len(self._timestamps)

            return count_10s, count_60s


class RequestTimingMiddleware:
    """
    Middleware that logs request timing for /api/ and /internal/ paths.
    """

    # e.g., /api/images/abc-123/status -> /api/images/:id/status
    PATH_PATTERNS = [
        (re.compile(r"^/api/images/[^/]+/status$"), "/api/images/:id/status"),
        (re.compile(r"^/internal/jobs/(?!process$|cleanup$)[^/]+$"), "/internal/jobs/:id"),
    ]

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]):
        self.get_response = get_response
        self.log_db_timing = os.environ.get("WEDDINGAI_LOG_DB_TIMING", "0") == "1"
        self._counters: dict[str, RollingCounter] = defaultdict(RollingCounter)

    def _normalize_path(self, path: str) -> str:
        """Normalize path by replacing UUIDs/IDs with placeholders."""
        for pattern, replacement in self.PATH_PATTERNS:
            if pattern.match(path):
                return replacement
        return path

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if not request.path.startswith(TIMED_PREFIXES):
            return self.get_response(request)

        start_time = time.perf_counter()
        now = time.time()

        db_queries_before = 0
        if self.log_db_timing:
            from django.db import connection
            db_queries_before = len(connection.queries)

        response = self.get_response(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response_bytes = len(response.content) if hasattr(response, "content") else 0

        normalized_path = self._normalize_path(request.path)
        count_10s, count_60s = self._counters[normalized_path].record(now)

        log_parts = [
            f"{request.method} {request.path}",
            f"status={response.status_code}",
            f"ms={duration_ms:.1f}",
            f"bytes={response_bytes}",
        ]

        if self.log_db_timing:
            from django.db import connection
            queries = connection.queries[db_queries_before:]

            db_time_ms = 0.0
            for query in queries:
                try:
                    db_time_ms += float(query.get("time", 0)) * 1000
                except (ValueError, TypeError):
                    pass

            log_parts.append(f"queries={len(queries)}")
            log_parts.append(f"db_ms={db_time_ms:.1f}")

        logger.info(" | ".join(log_parts))

        if count_10s > STORM_THRESHOLD_10S:
            logger.warning(
                "STORM path=%s count_10s=%d threshold=%d",
                normalized_path, count_10s, STORM_THRESHOLD_10S
            )
        elif count_60s > STORM_THRESHOLD_60S:
            logger.warning(
                "STORM path=%s count_60s=%d threshold=%d",
                normalized_path, count_60s, STORM_THRESHOLD_60S
            )

        response["X-Response-Bytes"] = str(response_bytes)
        response["X-Request-Time-Ms"] = f"{duration_ms:.1f}"

        return response
