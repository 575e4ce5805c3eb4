"""
generate-image job: handler, failure hook and queue wiring.

Pipeline (one attempt):
1. Validate the payload and check the display record still exists
2. Download the original photo and re-encode it as JPEG (images.preprocess_image)
3. Generate the stylized image
4. Upload the result to the CDN (wedding-ai/generated/generated_<image_id>)
5. Mark the GeneratedImage COMPLETED with its URL

Service failures raise and the queue retries the whole attempt. A malformed
payload, a missing record or an undecodable photo raise PermanentJobError
and fail the job at once. When the job is written FAILED,
mark_generation_failed flips the display record to FAILED so polling
clients stop waiting.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from django.utils import timezone
from pydantic import ValidationError

from weddingai.generation.clients import (
    CloudinaryUploader,
    ImageGenerationClient,
    fetch_image,
)
from weddingai.generation.images import ImageValidationError, preprocess_image
from weddingai.generation.models import GeneratedImage, GeneratedImageStatus
from weddingai.generation.schemas import GenerateImagePayload, build_prompt
from weddingai.jobs.exceptions import PermanentJobError
from weddingai.jobs.queue import QueueManager
from weddingai.jobs.registry import HandlerRegistry

logger = logging.getLogger(__name__)

GENERATE_IMAGE_JOB = "generate-image"
GENERATED_FOLDER = "wedding-ai/generated"


class GenerateImageHandler:
    """Callable handler for generate-image jobs."""

    def __init__(
        self,
        generator: ImageGenerationClient | None = None,
        uploader: CloudinaryUploader | None = None,
        fetcher: Callable[[str], bytes] = fetch_image,
    ):
        self.generator = generator or ImageGenerationClient.from_settings()
        self.uploader = uploader or CloudinaryUploader.from_settings()
        self.fetcher = fetcher

    def __call__(self, payload: dict[str, Any]) -> None:
        try:
            data = GenerateImagePayload.model_validate(payload)
        except ValidationError as e:
            raise PermanentJobError(f"Invalid generate-image payload: {e}") from e

        if not GeneratedImage.objects.filter(id=data.image_id).exists():
            raise PermanentJobError(f"GeneratedImage {data.image_id} not found")

        logger.info(
            "Generating image %s (style=%s)",
            data.image_id,
            data.style,
        )

        original = self.fetcher(data.original_url)
        try:
            source = preprocess_image(original)
        except ImageValidationError as e:
            raise PermanentJobError(f"Source photo rejected: {e}") from e

        result = self.generator.generate(source, build_prompt(data.style, data.prompt))
        generated_url = self.uploader.upload(
            result.image_bytes,
            GENERATED_FOLDER,
            f"generated_{data.image_id}",
            mime_type=result.mime_type,
        )

        rows_updated = GeneratedImage.objects.filter(id=data.image_id).update(
            generated_url=generated_url,
            status=GeneratedImageStatus.COMPLETED,
            updated_at=timezone.now(),
        )
        if rows_updated == 0:
            raise PermanentJobError(f"GeneratedImage {data.image_id} was deleted during generation")

        logger.info("Image %s completed: %s", data.image_id, generated_url)


def mark_generation_failed(payload: dict[str, Any], error: str) -> None:
    """Failure hook: the display record follows its job into FAILED."""
    image_id = payload.get("image_id")
    if not image_id:
        return

    rows_updated = GeneratedImage.objects.filter(
        id=image_id,
        status=GeneratedImageStatus.PROCESSING,
    ).update(
        status=GeneratedImageStatus.FAILED,
        updated_at=timezone.now(),
    )
    if rows_updated:
        logger.warning("Image %s marked failed: %s", image_id, error[:200])


def build_queue_manager(
    generator: ImageGenerationClient | None = None,
    uploader: CloudinaryUploader | None = None,
    fetcher: Callable[[str], bytes] = fetch_image,
) -> QueueManager:
    """
    Build a queue manager with every job type of this service registered.

    Called at process start by the worker command, the drain endpoint and
    the producer view.
    """
    registry = HandlerRegistry()
    registry.register(
        GENERATE_IMAGE_JOB,
        GenerateImageHandler(generator=generator, uploader=uploader, fetcher=fetcher),
        on_failure=mark_generation_failed,
    )
    return QueueManager(registry)
