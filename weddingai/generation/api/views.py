"""
Generation API Views.

Implements:
- POST /api/generate - kickoff (work-path): upload, debit, record, enqueue; returns immediately
- GET /api/images/:id/status - status poll (read-path), owner only

Handler-level errors are never reported synchronously; clients poll the
status endpoint until the record is completed or failed.
"""

from __future__ import annotations

import json
import logging
from uuid import UUID

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from pydantic import ValidationError

from weddingai.generation.clients import ImageUploadError
from weddingai.generation.images import ImageValidationError, validate_upload
from weddingai.generation.schemas import GenerateImageRequest, GenerationOptions
from weddingai.generation.services import (
    InsufficientCreditsError,
    get_image_status,
    has_credits,
    start_generation,
    upload_original,
)
from weddingai.generation.tasks import build_queue_manager
from weddingai.jobs.exceptions import StorageError

logger = logging.getLogger(__name__)


def _parse_uuid(value: str) -> UUID | None:
    """Parse a string to UUID, returning None on failure."""
    try:
        return UUID(value)
    except (ValueError, TypeError):
        return None


def _validation_errors(e: ValidationError) -> JsonResponse:
    return JsonResponse({
        "error": "Invalid request",
        "errors": [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ],
    }, status=400)


def _request_from_upload(request) -> GenerateImageRequest | JsonResponse:
    """Validate and upload a multipart photo; returns an error response on failure."""
    try:
        options = GenerationOptions.model_validate({
            "style": request.POST.get("style"),
            "prompt": request.POST.get("prompt"),
        })
    except ValidationError as e:
        return _validation_errors(e)

    uploaded = request.FILES.get("image")
    if uploaded is None:
        return JsonResponse({"error": "An image file is required"}, status=400)

    # Before the upload: a user without credits costs no CDN traffic
    if not has_credits(request.user):
        return JsonResponse({"error": str(InsufficientCreditsError())}, status=402)

    try:
        validate_upload(uploaded.content_type, uploaded.size)
        original_url = upload_original(request.user, uploaded.read())
    except ImageValidationError as e:
        return JsonResponse({"error": str(e)}, status=400)
    except ImageUploadError:
        logger.exception("Original upload failed for user %s", request.user.pk)
        return JsonResponse({"error": "Image upload failed"}, status=502)

    try:
        return GenerateImageRequest(
            original_url=original_url,
            style=options.style,
            prompt=options.prompt,
        )
    except ValidationError:
        logger.exception("CDN returned an unexpected delivery URL: %s", original_url)
        return JsonResponse({"error": "Image upload failed"}, status=502)


def _request_from_json(request) -> GenerateImageRequest | JsonResponse:
    try:
        body = json.loads(request.body or b"{}")
    except json.JSONDecodeError:
        return JsonResponse({"error": "Invalid JSON body"}, status=400)

    try:
        return GenerateImageRequest.model_validate(body)
    except ValidationError as e:
        return _validation_errors(e)


@csrf_exempt
@require_http_methods(["POST"])
def generate(request) -> JsonResponse:
    """
    POST /api/generate

    Multipart form (photo upload):
        image: jpeg | png | webp file, at most 10MB
        style: "classic" | "modern" | "vintage" | "outdoor"
        prompt: "..."

    JSON body (photo already on this service's Cloudinary cloud):
        {
            "original_url": "https://res.cloudinary.com/<cloud>/...",
            "style": "classic" | "modern" | "vintage" | "outdoor",
            "prompt": "..."
        }

    Response (202 Accepted):
        {
            "image_id": "uuid",
            "job_id": "uuid",
            "status": "processing",
            "poll_url": "/api/images/:id/status"
        }

    Response (400): invalid body, rejected photo, or foreign original_url
    Response (401): not signed in
    Response (402): no credits left
    Response (502): photo upload to the CDN failed
    Response (503): job store unavailable
    """
    if not request.user.is_authenticated:
        return JsonResponse({"error": "Authentication required"}, status=401)

    if request.content_type == "multipart/form-data":
        generation_request = _request_from_upload(request)
    else:
        generation_request = _request_from_json(request)
    if isinstance(generation_request, JsonResponse):
        return generation_request

    try:
        image = start_generation(
            request.user,
            generation_request,
            queue=build_queue_manager(),
        )
    except InsufficientCreditsError as e:
        return JsonResponse({"error": str(e)}, status=402)
    except StorageError:
        logger.exception("Generate kickoff failed for user %s", request.user.pk)
        return JsonResponse({"error": "Service temporarily unavailable"}, status=503)

    return JsonResponse({
        "image_id": str(image.id),
        "job_id": str(image.job_id),
        "status": image.status,
        "poll_url": f"/api/images/{image.id}/status",
    }, status=202)


@require_http_methods(["GET"])
def image_status(request, image_id: str) -> JsonResponse:
    """
    GET /api/images/:id/status

    Response (200 OK):
        {
            "id": "uuid",
            "status": "processing" | "completed" | "failed",
            "generated_url": "..." | null,
            ...
            "job": {"status": "...", "attempts": 1, "error": null, ...} | null
        }

    Response (401): not signed in
    Response (404): unknown image, or not owned by the caller
    """
    if not request.user.is_authenticated:
        return JsonResponse({"error": "Authentication required"}, status=401)

    parsed_id = _parse_uuid(image_id)
    if parsed_id is None:
        return JsonResponse({"error": "Image not found"}, status=404)

    try:
        data = get_image_status(request.user, parsed_id, queue=build_queue_manager())
    except StorageError:
        logger.exception("Status read failed for image %s", image_id)
        return JsonResponse({"error": "Service temporarily unavailable"}, status=503)

    if data is None:
        return JsonResponse({"error": "Image not found"}, status=404)

    return JsonResponse(data)
