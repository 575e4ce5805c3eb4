"""
Handler Registry: maps a job type to the callable that performs it.

Populated once at process start (see weddingai.generation.tasks.build_queue_manager)
and read-only afterwards. Instances are injected into QueueManager; there is
no process-wide registry.

Handlers take the job payload and return nothing; failure is signalled by
raising. Coroutine functions are accepted and run to completion by the
queue manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

JobPayload = dict[str, Any]
JobHandler = Callable[[JobPayload], Union[None, Awaitable[None]]]
FailureHook = Callable[[JobPayload, str], None]


@dataclass
class _Registration:
    handler: JobHandler
    on_failure: FailureHook | None = None


class HandlerRegistry:
    """
    In-memory job type -> handler mapping.

    Duplicate registration replaces the previous handler (last one wins),
    which keeps development autoreload simple.
    """

    def __init__(self):
        self._registrations: dict[str, _Registration] = {}

    def register(
        self,
        job_type: str,
        handler: JobHandler,
        on_failure: FailureHook | None = None,
    ) -> None:
        """
        Register a handler for a job type.

        Args:
            job_type: Job type tag
            handler: Callable invoked with the job payload
            on_failure: Optional callback (payload, error) run once the job
                has been written FAILED
        """
        if not job_type:
            raise ValueError("job_type is required")

        if job_type in self._registrations:
            logger.warning("Replacing handler for job type %s", job_type)

        self._registrations[job_type] = _Registration(
            handler=handler,
            on_failure=on_failure,
        )

    def resolve(self, job_type: str) -> JobHandler | None:
        registration = self._registrations.get(job_type)
        return registration.handler if registration else None

    def resolve_failure_hook(self, job_type: str) -> FailureHook | None:
        registration = self._registrations.get(job_type)
        return registration.on_failure if registration else None

    def registered_types(self) -> list[str]:
        return sorted(self._registrations)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)
