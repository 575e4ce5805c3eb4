"""
Django settings for the wedding photo backend.

- Loads secrets from environment variables
- Database via DATABASE_URL (postgres in production, sqlite locally)
- Job queue tuning and external service credentials are env-driven
"""

import os
from pathlib import Path

import dj_database_url
from dotenv import load_dotenv

# Load .env file if present (for local dev)
if os.environ.get("WEDDINGAI_TEST_MODE") != "true":
    load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


# =============================================================================
# SECURITY SETTINGS (env-driven)
# =============================================================================

SECRET_KEY = os.environ.get(
    "DJANGO_SECRET_KEY",
    "dev-insecure-key-do-not-use-in-production",
)

DEBUG = os.environ.get("DJANGO_DEBUG", "False").lower() in ("true", "1", "yes")

ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# =============================================================================
# APPLICATION DEFINITION
# =============================================================================

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party
    "corsheaders",
    # Project apps
    "weddingai.jobs",
    "weddingai.generation",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "weddingai.middleware.timing.RequestTimingMiddleware",
]

ROOT_URLCONF = "weddingai.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "weddingai.wsgi.application"


# =============================================================================
# DATABASE (via DATABASE_URL)
# =============================================================================

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
)

DATABASES = {
    "default": dj_database_url.parse(
        DATABASE_URL,
        conn_max_age=600,
        conn_health_checks=True,
    )
}


# =============================================================================
# PASSWORD VALIDATION
# =============================================================================

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]


# =============================================================================
# INTERNATIONALIZATION
# =============================================================================

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True


# =============================================================================
# STATIC FILES
# =============================================================================

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# =============================================================================
# CORS SETTINGS
# =============================================================================

CORS_ALLOWED_ORIGINS = os.environ.get(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000",
).split(",")

CORS_ALLOW_CREDENTIALS = True


# =============================================================================
# JOB QUEUE
# =============================================================================

JOB_QUEUE_BATCH_SIZE = int(os.environ.get("JOB_QUEUE_BATCH_SIZE", "10"))
JOB_QUEUE_MAX_ATTEMPTS = int(os.environ.get("JOB_QUEUE_MAX_ATTEMPTS", "3"))
JOB_QUEUE_RETENTION_DAYS = int(os.environ.get("JOB_QUEUE_RETENTION_DAYS", "30"))
JOB_QUEUE_STALE_AFTER_MINUTES = int(os.environ.get("JOB_QUEUE_STALE_AFTER_MINUTES", "15"))

# 0 keeps RETRYING jobs eligible on the next drain cycle
JOB_QUEUE_BACKOFF_BASE_SECONDS = int(os.environ.get("JOB_QUEUE_BACKOFF_BASE_SECONDS", "0"))
JOB_QUEUE_BACKOFF_MULTIPLIER = int(os.environ.get("JOB_QUEUE_BACKOFF_MULTIPLIER", "2"))

# Shared secret for POST /internal/jobs/process (scheduler trigger)
JOB_QUEUE_CRON_TOKEN = os.environ.get("JOB_QUEUE_CRON_TOKEN", "")


# =============================================================================
# EXTERNAL SERVICES
# =============================================================================

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_IMAGE_MODEL = os.environ.get("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-exp")
GEMINI_TIMEOUT_S = int(os.environ.get("GEMINI_TIMEOUT_S", "120"))

CLOUDINARY_CLOUD_NAME = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.environ.get("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.environ.get("CLOUDINARY_API_SECRET", "")


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "weddingai": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
