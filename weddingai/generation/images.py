"""
Photo upload checks and preprocessing (Pillow).

- validate_upload(): declared content type and size of an uploaded file
- validate_image_quality(): byte-size bounds of the photo itself
- preprocess_image(): fit within 1024x1024 (never enlarged), re-encode as JPEG

Everything sent to the generation model goes through preprocess_image, so
the "image/jpeg" label on the model request is always accurate.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MIN_UPLOAD_BYTES = 1024
MAX_DIMENSION = 1024
JPEG_QUALITY = 90


class ImageValidationError(Exception):
    """Raised when a photo is rejected or cannot be decoded."""

    pass


def validate_upload(content_type: str | None, size: int) -> None:
    """
    Check an uploaded file before reading it.

    Raises:
        ImageValidationError: Unsupported type or over MAX_UPLOAD_BYTES
    """
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ImageValidationError(
            f"Unsupported image type: {content_type or 'unknown'} "
            f"(allowed: {', '.join(ALLOWED_CONTENT_TYPES)})"
        )
    if size > MAX_UPLOAD_BYTES:
        raise ImageValidationError("Image is too large (max 10MB)")


def validate_image_quality(image_bytes: bytes) -> None:
    """
    Raises:
        ImageValidationError: Fewer than MIN_UPLOAD_BYTES or more than MAX_UPLOAD_BYTES
    """
    if len(image_bytes) < MIN_UPLOAD_BYTES:
        raise ImageValidationError("Image file is too small")
    if len(image_bytes) > MAX_UPLOAD_BYTES:
        raise ImageValidationError("Image is too large (max 10MB)")


def preprocess_image(image_bytes: bytes) -> bytes:
    """
    Shrink a photo to fit MAX_DIMENSION x MAX_DIMENSION and encode it as JPEG.

    Aspect ratio is kept and smaller photos keep their size. Alpha and
    palette images are flattened to RGB.

    Raises:
        ImageValidationError: If Pillow cannot decode the bytes
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()

        if image.mode != "RGB":
            image = image.convert("RGB")

        original_size = image.size
        image.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, Image.DecompressionBombError, ValueError) as e:
        raise ImageValidationError(f"Unreadable image: {e}") from e

    logger.debug(
        "Preprocessed image %sx%s -> %sx%s",
        original_size[0],
        original_size[1],
        image.size[0],
        image.size[1],
    )
    return buffer.getvalue()
