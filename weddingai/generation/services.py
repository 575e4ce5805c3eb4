"""
Generation producer/consumer services.

- has_credits(): balance pre-check before accepting an upload
- upload_original(): validate, preprocess and upload a source photo
- start_generation(): debit a credit, create the display record, enqueue the job
- get_image_status(): owner-scoped read of the display record and its job

The debit, the record and the job are written in one transaction: a
failed enqueue leaves the user's balance untouched.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from uuid import UUID

from django.db import transaction
from django.db.models import F

from weddingai.generation.clients import CloudinaryUploader
from weddingai.generation.images import preprocess_image, validate_image_quality
from weddingai.generation.models import CreditAccount, GeneratedImage
from weddingai.generation.schemas import GenerateImagePayload, GenerateImageRequest
from weddingai.generation.tasks import GENERATE_IMAGE_JOB
from weddingai.jobs.queue import QueueManager

logger = logging.getLogger(__name__)

ORIGINALS_FOLDER = "wedding-ai/originals"


class InsufficientCreditsError(Exception):
    """Raised when the user has no credit left for a generation."""

    def __init__(self, message: str = "Insufficient credits"):
        super().__init__(message)


def has_credits(user) -> bool:
    """Cheap pre-check before an upload; start_generation re-checks under lock."""
    return CreditAccount.objects.filter(user=user, credits__gte=1).exists()


def upload_original(
    user,
    image_bytes: bytes,
    uploader: CloudinaryUploader | None = None,
) -> str:
    """
    Validate, preprocess and upload a user's source photo.

    Returns:
        The photo's secure delivery URL (wedding-ai/originals/original_<ms>_<user>)

    Raises:
        ImageValidationError: Too small, too large, or not a decodable image
        ImageUploadError: If the CDN upload fails
    """
    validate_image_quality(image_bytes)
    processed = preprocess_image(image_bytes)

    uploader = uploader or CloudinaryUploader.from_settings()
    public_id = f"original_{int(time.time() * 1000)}_{user.pk}"
    url = uploader.upload(processed, ORIGINALS_FOLDER, public_id)

    logger.info(
        "Original uploaded: user=%s bytes=%d processed_bytes=%d",
        user.pk,
        len(image_bytes),
        len(processed),
    )
    return url


def start_generation(
    user,
    request: GenerateImageRequest,
    queue: QueueManager,
) -> GeneratedImage:
    """
    Start a stylized photo generation for a user.

    Raises:
        InsufficientCreditsError: If the user's balance is below 1
        StorageError: If the job store is unavailable (transaction rolled back)
    """
    with transaction.atomic():
        account = (
            CreditAccount.objects
            .select_for_update()
            .filter(user=user)
            .first()
        )
        if account is None or account.credits < 1:
            raise InsufficientCreditsError()

        CreditAccount.objects.filter(pk=account.pk).update(credits=F("credits") - 1)

        image = GeneratedImage.objects.create(
            user=user,
            original_url=str(request.original_url),
            prompt=f"{request.prompt}, wedding photography style: {request.style}",
            style=request.style,
        )

        payload = GenerateImagePayload(
            image_id=image.id,
            original_url=str(request.original_url),
            style=request.style,
            prompt=request.prompt,
        )
        job_id = queue.enqueue(GENERATE_IMAGE_JOB, payload.model_dump(mode="json"))

        image.job_id = job_id
        image.save(update_fields=["job", "updated_at"])

    logger.info(
        "Generation started: image=%s job=%s user=%s",
        image.id,
        job_id,
        user.pk,
    )
    return image


def get_image_status(
    user,
    image_id: UUID,
    queue: QueueManager,
) -> dict[str, Any] | None:
    """
    Status of one of the user's images.

    Returns None if the image does not exist or belongs to someone else.
    """
    image = GeneratedImage.objects.filter(id=image_id, user=user).first()
    if image is None:
        return None

    data = image.to_dict()
    job = queue.get_job_status(image.job_id) if image.job_id else None
    data["job"] = job.to_dict() if job else None
    return data
