"""
URL configuration for the wedding photo backend.

- Healthcheck
- Generation producer/consumer endpoints under /api/
- Scheduler-triggered job drain under /internal/
"""

from django.contrib import admin
from django.urls import include, path

from weddingai import views

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", views.healthcheck, name="healthcheck"),
    path("api/", include("weddingai.generation.api.urls", namespace="generation")),
    path("internal/jobs/", include("weddingai.jobs.api.urls", namespace="jobs")),
]
