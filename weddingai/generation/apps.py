"""
Generation app configuration.

Stylized wedding photo generation: display records, credits, the
generate-image job handler and its HTTP endpoints.
"""

from django.apps import AppConfig


class GenerationConfig(AppConfig):
    """Configuration for the generation app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "weddingai.generation"
    label = "generation"
    verbose_name = "Image Generation"
