"""
Internal job queue URL routing (mounted under /internal/jobs/).
"""

from django.urls import path

from weddingai.jobs.api import views

app_name = "jobs"

urlpatterns = [
    path("process", views.process_jobs, name="process"),
    path("cleanup", views.cleanup_jobs, name="cleanup"),
    path("<str:job_id>", views.job_status, name="job-status"),
]
