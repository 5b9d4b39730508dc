"""Decide how a settled import attempt is recorded on the job row."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.db.models.import_job import STATUS_FAILED, STATUS_QUEUED, STATUS_SUCCESS

OUTCOME_SUCCESS = "success"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class Resolution:
    """Target state for the guarded running -> terminal/queued update."""

    outcome: str
    status: str
    error_count: int
    finished_at: datetime | None
    log_level: str
    message: str

    @property
    def retryable(self) -> bool:
        return self.outcome == OUTCOME_RETRY

    @property
    def values(self) -> dict:
        """Columns to write; error_count only moves on processor failure."""
        values = {"status": self.status, "finished_at": self.finished_at}
        if self.outcome in (OUTCOME_RETRY, OUTCOME_FAILED):
            values["error_count"] = self.error_count
        return values


def resolve_attempt(
    job_id: str,
    *,
    error_count: int,
    max_retries: int,
    now: datetime,
    cancelled: bool,
    failed: bool,
) -> Resolution:
    """Map a settled attempt onto its resulting job state.

    Cancellation wins over failure: a processor that raised because it
    was cancelled is not retried and does not consume a retry.
    """
    if cancelled:
        return Resolution(
            outcome=OUTCOME_CANCELLED,
            status=STATUS_FAILED,
            error_count=error_count,
            finished_at=now,
            log_level="warn",
            message=f"Job {job_id} was cancelled",
        )

    if not failed:
        return Resolution(
            outcome=OUTCOME_SUCCESS,
            status=STATUS_SUCCESS,
            error_count=error_count,
            finished_at=now,
            log_level="info",
            message=f"Job {job_id} completed successfully",
        )

    new_error_count = error_count + 1
    if new_error_count < max_retries:
        return Resolution(
            outcome=OUTCOME_RETRY,
            status=STATUS_QUEUED,
            error_count=new_error_count,
            finished_at=None,
            log_level="error",
            message=f"Job {job_id} failed, will retry ({new_error_count}/{max_retries})",
        )

    return Resolution(
        outcome=OUTCOME_FAILED,
        status=STATUS_FAILED,
        error_count=new_error_count,
        finished_at=now,
        log_level="error",
        message=f"Job {job_id} failed permanently after {max_retries} retries",
    )
