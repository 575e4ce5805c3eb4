"""
Generation models.

- CreditAccount: per-user generation credit balance
- GeneratedImage: display record polled by the client while its job runs

GeneratedImage lifecycle: PROCESSING -> COMPLETED | FAILED
The linked job (if any) carries the attempt/retry detail.
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models


class CreditAccount(models.Model):
    """Generation credit balance for one user."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="credit_account",
    )
    credits = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "generation"
        db_table = "generation_credit_account"

    def __str__(self) -> str:
        return f"CreditAccount {self.user_id}: {self.credits}"


class GeneratedImageStatus:
    """Status constants for GeneratedImage."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GeneratedImage(models.Model):
    """A user's stylized wedding photo request and its result."""

    STATUS_CHOICES = [
        (GeneratedImageStatus.PROCESSING, "Processing"),
        (GeneratedImageStatus.COMPLETED, "Completed"),
        (GeneratedImageStatus.FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="generated_images",
    )
    original_url = models.URLField(max_length=1000)
    generated_url = models.URLField(max_length=1000, null=True, blank=True)
    prompt = models.TextField()
    style = models.CharField(max_length=50)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=GeneratedImageStatus.PROCESSING,
        db_index=True,
    )

    # Job that produces generated_url; cleared when the job is swept
    job = models.ForeignKey(
        "jobs.Job",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="generated_images",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "generation"
        db_table = "generation_generated_image"
        indexes = [
            models.Index(
                fields=["user", "-created_at"],
                name="idx_genimage_user_created",
            ),
        ]

    def __str__(self) -> str:
        return f"GeneratedImage {self.id} [{self.status}]"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "status": self.status,
            "style": self.style,
            "prompt": self.prompt,
            "original_url": self.original_url,
            "generated_url": self.generated_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
