"""
Pytest configuration for the wedding photo backend tests.

Shared fixtures:
- client: Django test client
- registry / queue: a QueueManager with no handlers registered
- user / funded_user: accounts for the generation endpoints
- make_photo: encoded test photos built with Pillow
"""

import os

import django
import pytest


def pytest_configure():
    """Configure Django settings before tests run."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "weddingai.settings_test")
    django.setup()


@pytest.fixture
def client():
    """Django test client fixture."""
    from django.test import Client
    return Client()


@pytest.fixture
def registry():
    """Empty handler registry."""
    from weddingai.jobs.registry import HandlerRegistry
    return HandlerRegistry()


@pytest.fixture
def queue(registry):
    """Queue manager over the empty registry, retrying immediately."""
    from weddingai.jobs.queue import QueueManager
    from weddingai.jobs.retry import RetryPolicy
    return QueueManager(registry, retry_policy=RetryPolicy(base_seconds=0))


@pytest.fixture
def user(db):
    """A signed-up user without a credit account."""
    from django.contrib.auth import get_user_model
    return get_user_model().objects.create_user(
        username="bride@example.com",
        email="bride@example.com",
        password="test-password",
    )


@pytest.fixture
def funded_user(user):
    """A user with 3 generation credits."""
    from weddingai.generation.models import CreditAccount
    CreditAccount.objects.create(user=user, credits=3)
    return user


@pytest.fixture
def make_photo():
    """Factory for encoded noise photos (noise keeps them above 1KB)."""
    import io

    from PIL import Image

    def _make(size=(1600, 1200), image_format="PNG", mode="RGB"):
        image = Image.effect_noise(size, 64).convert(mode)
        buffer = io.BytesIO()
        image.save(buffer, format=image_format)
        return buffer.getvalue()

    return _make
