"""
Job queue exceptions.

- StorageError: the job store cannot be reached; propagates to callers
- HandlerNotRegisteredError: permanent misconfiguration; recorded on the job
- PermanentJobError: raised by handlers to fail a job without retrying
"""


class JobQueueError(Exception):
    """Base class for job queue errors."""

    pass


class StorageError(JobQueueError):
    """
    Raised when the job store is unavailable.

    Never converted into a job state: there is no safe state to
    transition to without durable storage.
    """

    pass


class HandlerNotRegisteredError(JobQueueError):
    """Raised when a job's type has no registered handler."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler registered for job type: {job_type}")


class PermanentJobError(JobQueueError):
    """
    Raised by a handler when retrying cannot help (malformed payload,
    missing target record). The job goes straight to FAILED.
    """

    pass
