"""
Generation API URL routing.

- POST /api/generate
- GET /api/images/:id/status
"""

from django.urls import path

from weddingai.generation.api import views

app_name = "generation"

urlpatterns = [
    # Work-path: generation kickoff
    path(
        "generate",
        views.generate,
        name="generate",
    ),
    # Read-path: image status
    path(
        "images/<str:image_id>/status",
        views.image_status,
        name="image-status",
    ),
]
