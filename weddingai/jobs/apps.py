"""
Jobs app configuration.

Durable job queue: Job model, store, handler registry and queue manager.
"""

from django.apps import AppConfig


class JobsConfig(AppConfig):
    """Configuration for the jobs app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "weddingai.jobs"
    label = "jobs"
    verbose_name = "Job Queue"
