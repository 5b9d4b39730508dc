"""Shared helpers for shaping job responses."""
from __future__ import annotations

from app.api.schemas.job import JobStatus
from app.db.models.import_job import ImportJob


def serialize_job(job: ImportJob, progress_payload: dict | None = None) -> JobStatus:
    """Combine DB state + cached progress snapshot into a response schema.

    The job row is authoritative for status and counters; the Redis
    snapshot only contributes a friendlier message when one exists.
    """
    progress_payload = progress_payload or {}

    progress = None
    if job.total_items:
        progress = min(job.processed_items / job.total_items, 1.0)

    message = progress_payload.get("message")
    if not message:
        total_display = job.total_items if job.total_items else "?"
        message = f"Processed {job.processed_items}/{total_display} items"

    status = JobStatus.model_validate(job)
    return status.model_copy(update={"progress": progress, "message": message})
