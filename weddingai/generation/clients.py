"""
Clients for the external services the generation pipeline calls.

Implements exactly 3 primitives:
1. ImageGenerationClient.generate(image_bytes, prompt) -> GeneratedImageResult
   (Gemini via the google-genai SDK; the image comes back as an inline_data part)
2. CloudinaryUploader.upload(image_bytes, folder, public_id) -> secure URL
   (cloudinary SDK, base64 data URI upload)
3. fetch_image(url) -> bytes

SDK clients are configured per call from settings, so a missing key fails
the attempt with a clear message instead of failing at import time.

Every failure raises; the job queue decides whether to retry.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import requests
from django.conf import settings
from google import genai
from google.genai import errors, types

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 60

# Delivery transformation applied by Cloudinary on upload
UPLOAD_TRANSFORMATION = {
    "quality": "auto",
    "fetch_format": "auto",
    "width": 1024,
    "height": 1024,
    "crop": "limit",
}


class ImageGenerationError(Exception):
    """Raised when the generation API fails or returns no image."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body[:500] if body else None  # Trim body for logging
        super().__init__(message)


class ImageUploadError(Exception):
    """Raised when the CDN upload fails."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body[:500] if body else None
        super().__init__(message)


@dataclass
class GeneratedImageResult:
    """Image returned by the generation service."""

    image_bytes: bytes
    mime_type: str = "image/jpeg"


def fetch_image(url: str, timeout: int = DEFAULT_TIMEOUT_S) -> bytes:
    """
    Download an image.

    Raises:
        ImageGenerationError: On HTTP failure or empty body
    """
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ImageGenerationError(f"Image download failed: {e}") from e

    if response.status_code != 200:
        raise ImageGenerationError(
            f"Image download failed with HTTP {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )
    if not response.content:
        raise ImageGenerationError("Image download returned an empty body")
    return response.content


def build_generation_instruction(prompt: str) -> str:
    """Wrap the style prompt in the instruction sent alongside the photo."""
    return (
        "Transform this image into a beautiful wedding photo with the following "
        f"style: {prompt}. The image should look like a professional wedding "
        "photograph with high quality, proper lighting, and wedding-themed elements."
    )


class ImageGenerationClient:
    """Gemini image-to-image client."""

    def __init__(self, api_key: str, model: str, timeout: int = DEFAULT_TIMEOUT_S):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "ImageGenerationClient":
        return cls(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GEMINI_IMAGE_MODEL,
            timeout=getattr(settings, "GEMINI_TIMEOUT_S", DEFAULT_TIMEOUT_S),
        )

    def generate(self, image_bytes: bytes, prompt: str) -> GeneratedImageResult:
        """
        Transform a photo into a stylized wedding photo.

        Args:
            image_bytes: Source photo (JPEG, see images.preprocess_image)
            prompt: Full style prompt (see schemas.build_prompt)

        Raises:
            ImageGenerationError: If unconfigured, on API error, or if no image came back
        """
        if not self.api_key:
            raise ImageGenerationError("GEMINI_API_KEY is not configured")

        client = genai.Client(
            api_key=self.api_key,
            http_options=types.HttpOptions(timeout=self.timeout * 1000),
        )

        call_start = time.monotonic()
        logger.info("IMAGE_GENERATION_START model=%s bytes=%d", self.model, len(image_bytes))

        try:
            response = client.models.generate_content(
                model=self.model,
                contents=[
                    build_generation_instruction(prompt),
                    types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"),
                ],
                config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            )
        except errors.APIError as e:
            raise ImageGenerationError(
                f"Gemini API error: {e.message or e}",
                status_code=e.code,
                body=str(e),
            ) from e
        except Exception as e:
            raise ImageGenerationError(f"Generation request failed: {e}") from e

        logger.info(
            "IMAGE_GENERATION_END model=%s ms=%d",
            self.model,
            (time.monotonic() - call_start) * 1000,
        )

        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                inline = part.inline_data
                if inline is not None and inline.data:
                    return GeneratedImageResult(
                        image_bytes=inline.data,
                        mime_type=inline.mime_type or "image/jpeg",
                    )

        raise ImageGenerationError(
            "Gemini response contained no image",
            body=response.text if response.candidates else None,
        )


class CloudinaryUploader:
    """Signed image uploads through the Cloudinary SDK."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret

    @classmethod
    def from_settings(cls) -> "CloudinaryUploader":
        return cls(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
        )

    def upload(
        self,
        image_bytes: bytes,
        folder: str,
        public_id: str,
        mime_type: str = "image/jpeg",
    ) -> str:
        """
        Upload an image and return its secure URL.

        Raises:
            ImageUploadError: If unconfigured or the upload fails
        """
        if not self.cloud_name or not self.api_key or not self.api_secret:
            raise ImageUploadError("Cloudinary credentials are not configured")

        cloudinary.config(
            cloud_name=self.cloud_name,
            api_key=self.api_key,
            api_secret=self.api_secret,
            secure=True,
        )
        data_uri = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"

        try:
            result = cloudinary.uploader.upload(
                data_uri,
                folder=folder,
                public_id=public_id,
                resource_type="image",
                transformation=UPLOAD_TRANSFORMATION,
            )
        except cloudinary.exceptions.Error as e:
            raise ImageUploadError(f"Cloudinary upload failed: {e}") from e

        secure_url = result.get("secure_url")
        if not secure_url:
            raise ImageUploadError("Cloudinary response contained no secure_url")

        logger.info("Uploaded %s/%s to Cloudinary", folder, public_id)
        return secure_url
