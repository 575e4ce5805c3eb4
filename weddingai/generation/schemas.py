"""
Generation request and job payload schemas.

Pydantic v2 models validating:
- the producer's request (POST /api/generate, JSON body or multipart form)
- the generate-image job payload, re-validated by the handler

Source photos are only ever fetched from this service's own Cloudinary
delivery host (https://res.cloudinary.com/<CLOUDINARY_CLOUD_NAME>/...).
"""

from typing import Literal
from urllib.parse import urlsplit
from uuid import UUID

from django.conf import settings
from pydantic import BaseModel, Field, HttpUrl, field_validator

CLOUDINARY_DELIVERY_HOST = "res.cloudinary.com"

Style = Literal["classic", "modern", "vintage", "outdoor"]

# Descriptive prompt per preset; the user's prompt is appended
STYLE_PROMPTS: dict[str, str] = {
    "classic": (
        "elegant classic wedding photography, soft lighting, romantic atmosphere, "
        "traditional wedding dress, beautiful bouquet, professional studio lighting"
    ),
    "modern": (
        "modern contemporary wedding photography, clean lines, minimalist aesthetic, "
        "contemporary wedding dress, sleek styling, modern venue"
    ),
    "vintage": (
        "vintage retro wedding photography, film grain, nostalgic mood, "
        "vintage wedding dress, classic styling, retro atmosphere"
    ),
    "outdoor": (
        "outdoor garden wedding photography, natural lighting, fresh atmosphere, "
        "outdoor venue, natural beauty, garden setting"
    ),
}


def build_prompt(style: str, prompt: str | None = None) -> str:
    """Combine the style preset prompt with the user's prompt."""
    base = STYLE_PROMPTS.get(style, STYLE_PROMPTS["classic"])
    return f"{base}, {prompt}" if prompt else base


def check_delivery_url(url: str) -> str:
    """
    Accept only HTTPS URLs under this service's Cloudinary cloud.

    Raises:
        ValueError: For any other scheme, host, port, credentials or cloud
    """
    cloud_name = settings.CLOUDINARY_CLOUD_NAME
    if not cloud_name:
        raise ValueError("CLOUDINARY_CLOUD_NAME is not configured")

    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError:
        raise ValueError("original_url has an invalid port") from None

    if (
        parts.scheme != "https"
        or parts.hostname != CLOUDINARY_DELIVERY_HOST
        or parts.username is not None
        or port not in (None, 443)
        or not parts.path.startswith(f"/{cloud_name}/")
    ):
        raise ValueError(
            f"original_url must be an https://{CLOUDINARY_DELIVERY_HOST}/{cloud_name}/ URL"
        )
    return url


class GenerationOptions(BaseModel):
    """Style fields shared by the JSON body and the multipart upload form."""

    style: Style
    prompt: str = Field(min_length=1, max_length=500)


class GenerateImageRequest(GenerationOptions):
    """Body of POST /api/generate (JSON form, photo already on the CDN)."""

    original_url: HttpUrl

    @field_validator("original_url")
    @classmethod
    def _delivery_url(cls, value: HttpUrl) -> HttpUrl:
        check_delivery_url(str(value))
        return value


class GenerateImagePayload(BaseModel):
    """Payload of a generate-image job."""

    image_id: UUID
    original_url: str
    style: Style
    prompt: str

    @field_validator("original_url")
    @classmethod
    def _delivery_url(cls, value: str) -> str:
        return check_delivery_url(value)
