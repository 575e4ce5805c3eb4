"""
Internal job queue views.

Scheduler surface for hosts without a long-lived worker process
(cron / serverless triggers):
- POST /internal/jobs/process - release stale claims, run one drain cycle
- POST /internal/jobs/cleanup - retention sweep
- GET /internal/jobs/:id - job status (operator inspection)

Access control:
- Token via X-Job-Queue-Token header
- Token configured via JOB_QUEUE_CRON_TOKEN env var
- Returns 404 if token missing, wrong, or env var unset
"""

from __future__ import annotations

import hmac
import json
import logging
from functools import wraps

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from weddingai.generation.tasks import build_queue_manager
from weddingai.jobs.conf import get_queue_config
from weddingai.jobs.exceptions import StorageError

logger = logging.getLogger(__name__)

TOKEN_HEADER = "HTTP_X_JOB_QUEUE_TOKEN"


def require_queue_token(view_func):
    """Return 404 unless the request carries the configured queue token."""

    @wraps(view_func)
    def wrapper(request: HttpRequest, *args, **kwargs):
        expected = get_queue_config().cron_token
        provided = request.META.get(TOKEN_HEADER, "")
        if not expected or not hmac.compare_digest(provided, expected):
            return JsonResponse({"error": "Not found"}, status=404)
        return view_func(request, *args, **kwargs)

    return wrapper


def _read_int(body: dict, key: str) -> int | None:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(f"{key} must be a positive integer")
    return value


def _parse_body(request: HttpRequest) -> dict:
    if not request.body:
        return {}
    body = json.loads(request.body)
    if not isinstance(body, dict):
        raise ValueError("Body must be a JSON object")
    return body


@csrf_exempt
@require_http_methods(["POST"])
@require_queue_token
def process_jobs(request: HttpRequest) -> JsonResponse:
    """
    POST /internal/jobs/process

    Request body (optional):
        {"batch_size": 10}

    Response (200 OK):
        {"released": 0, "processed": 3}

    Response (503): job store unavailable
    """
    try:
        batch_size = _read_int(_parse_body(request), "batch_size")
    except (ValueError, json.JSONDecodeError) as e:
        return JsonResponse({"error": str(e)}, status=400)

    queue = build_queue_manager()
    try:
        released = queue.release_stale_jobs()
        processed = queue.process_jobs(batch_size=batch_size)
    except StorageError:
        logger.exception("Drain cycle aborted: job store unavailable")
        return JsonResponse({"error": "Job store unavailable"}, status=503)

    return JsonResponse({"released": released, "processed": processed})


@csrf_exempt
@require_http_methods(["POST"])
@require_queue_token
def cleanup_jobs(request: HttpRequest) -> JsonResponse:
    """
    POST /internal/jobs/cleanup

    Request body (optional):
        {"retention_days": 30}

    Response (200 OK):
        {"deleted": 12}
    """
    try:
        retention_days = _read_int(_parse_body(request), "retention_days")
    except (ValueError, json.JSONDecodeError) as e:
        return JsonResponse({"error": str(e)}, status=400)

    try:
        deleted = build_queue_manager().cleanup_completed_jobs(retention_days=retention_days)
    except StorageError:
        logger.exception("Retention sweep aborted: job store unavailable")
        return JsonResponse({"error": "Job store unavailable"}, status=503)

    return JsonResponse({"deleted": deleted})


@require_http_methods(["GET"])
@require_queue_token
def job_status(request: HttpRequest, job_id: str) -> JsonResponse:
    """
    GET /internal/jobs/:id

    Response (200 OK): job fields (see Job.to_dict)
    Response (404): unknown id
    Response (503): job store unavailable
    """
    try:
        job = build_queue_manager().get_job_status(job_id)
    except StorageError:
        logger.exception("Job lookup failed: job store unavailable job_id=%s", job_id)
        return JsonResponse({"error": "Job store unavailable"}, status=503)

    if job is None:
        return JsonResponse({"error": "Job not found"}, status=404)
    return JsonResponse(job.to_dict())
