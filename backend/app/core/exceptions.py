"""Exception hierarchy for the import queue and its processors."""

from __future__ import annotations


class ImportQueueError(Exception):
    """Base class for import queue errors."""


class InvalidJobTypeError(ImportQueueError, ValueError):
    """Raised when a job is enqueued with a type other than full/delta."""


class ImportCancelledError(ImportQueueError):
    """Raised by a cancellation token once the queue has asked a job to stop."""

    def __init__(self, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(f"Import job {job_id} was cancelled" if job_id else "Import job was cancelled")


class ImportProcessingError(ImportQueueError):
    """Processor failure carrying the details recorded in import_job_errors.

    Processors raise this when they know which stage failed or which
    external item caused the failure. Any other exception is recorded
    with stage ``process``.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str = "process",
        code: str | None = None,
        external_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.code = code
        self.external_id = external_id


class ImportSourceNotFoundError(ImportProcessingError):
    def __init__(self, source_id: str) -> None:
        super().__init__(
            f"Import source {source_id} not found",
            stage="fetch",
            code="source_not_found",
        )
        self.source_id = source_id


class UnsupportedPlatformError(ImportProcessingError):
    def __init__(self, platform: str) -> None:
        super().__init__(
            f"Unsupported platform: {platform}",
            stage="fetch",
            code="unsupported_platform",
        )
        self.platform = platform
