"""
Management command for the job queue worker.

Usage:
    python manage.py process_jobs

Options:
    --batch-size: Max jobs claimed per drain cycle (default: JOB_QUEUE_BATCH_SIZE)
    --poll-interval: Seconds to sleep after an empty cycle (default: 5)
    --stale-check-interval: Seconds between stale claim checks (default: 60)
    --max-cycles: Max drain cycles before exiting (0 = unlimited, default: 0)
    --once: Run a single drain cycle and exit (cron-style)

The worker:
1. Periodically releases jobs stuck in PROCESSING
2. Runs drain cycles (claim -> handler -> transition)
3. Sleeps when a cycle found nothing to do
4. Prints per-status job counts on exit

A StorageError aborts the command: there is no safe state to move jobs
into without the job store.
"""

from __future__ import annotations

import logging
import signal
import time

from django.core.management.base import BaseCommand, CommandError

from weddingai.generation.tasks import build_queue_manager
from weddingai.jobs.exceptions import StorageError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Run the job queue worker."""

    help = "Run the job queue worker for processing durable jobs"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._shutdown_requested = False

    def add_arguments(self, parser):
        parser.add_argument(
            "--batch-size",
            type=int,
            default=None,
            help="Max jobs claimed per drain cycle (default: JOB_QUEUE_BATCH_SIZE)",
        )
        parser.add_argument(
            "--poll-interval",
            type=float,
            default=5,
            help="Seconds to sleep after an empty cycle (default: 5)",
        )
        parser.add_argument(
            "--stale-check-interval",
            type=int,
            default=60,
            help="Seconds between stale claim checks (default: 60)",
        )
        parser.add_argument(
            "--max-cycles",
            type=int,
            default=0,
            help="Max drain cycles before exiting (0 = unlimited)",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single drain cycle and exit",
        )

    def handle(self, *args, **options):
        batch_size = options["batch_size"]
        poll_interval = options["poll_interval"]
        stale_check_interval = options["stale_check_interval"]
        max_cycles = 1 if options["once"] else options["max_cycles"]

        if batch_size is not None and batch_size < 1:
            raise CommandError("--batch-size must be positive")

        # Register signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        queue = build_queue_manager()

        self.stdout.write("Starting job queue worker")
        self.stdout.write(f"  Handlers: {', '.join(queue.registry.registered_types())}")
        self.stdout.write(f"  Poll interval: {poll_interval}s")
        self.stdout.write(f"  Stale check interval: {stale_check_interval}s")
        if max_cycles > 0:
            self.stdout.write(f"  Max cycles: {max_cycles}")

        cycles = 0
        jobs_processed = 0
        last_stale_check = None

        try:
            while not self._shutdown_requested:
                now = time.monotonic()
                if last_stale_check is None or now - last_stale_check >= stale_check_interval:
                    released = queue.release_stale_jobs()
                    if released > 0:
                        self.stdout.write(f"Released {released} stale job(s)")
                    last_stale_check = now

                processed = queue.process_jobs(batch_size=batch_size)
                jobs_processed += processed
                cycles += 1

                if processed:
                    self.stdout.write(f"Processed {processed} job(s)")

                if max_cycles > 0 and cycles >= max_cycles:
                    break

                if processed == 0:
                    time.sleep(poll_interval)
        except StorageError as e:
            raise CommandError(f"Job store unavailable: {e}") from e

        if self._shutdown_requested:
            self.stdout.write("\nGraceful shutdown complete")

        counts = queue.stats()
        self.stdout.write(
            "Job counts: " + ", ".join(f"{status}={count}" for status, count in counts.items())
        )
        self.stdout.write(f"Worker exiting. Jobs processed: {jobs_processed}")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        sig_name = signal.Signals(signum).name
        self.stdout.write(f"\nReceived {sig_name}, shutting down gracefully...")
        self._shutdown_requested = True
