"""
Management command for the job retention sweep.

Usage:
    python manage.py cleanup_jobs [--days 30]

Deletes COMPLETED jobs whose completion is older than the retention window.
FAILED jobs are never deleted.
"""

from django.core.management.base import BaseCommand, CommandError

from weddingai.generation.tasks import build_queue_manager
from weddingai.jobs.exceptions import StorageError


class Command(BaseCommand):
    help = "Delete completed jobs older than the retention window"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Retention window in days (default: JOB_QUEUE_RETENTION_DAYS)",
        )

    def handle(self, *args, **options):
        days = options["days"]
        if days is not None and days < 0:
            raise CommandError("--days must not be negative")

        try:
            deleted = build_queue_manager().cleanup_completed_jobs(retention_days=days)
        except StorageError as e:
            raise CommandError(f"Job store unavailable: {e}") from e

        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} completed job(s)"))
