"""Import job endpoints: enqueue, status, logs, errors and progress stream."""
from __future__ import annotations

import asyncio
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from app.api.dependencies.queue import get_import_queue
from app.api.routers.job_helpers import serialize_job
from app.api.schemas.job import JobCreate, JobErrorEntry, JobLogEntry, JobStatus
from app.db.models.import_job import JOB_STATUSES, STATUS_FAILED, STATUS_SUCCESS
from app.services.progress_tracker import fetch_progress
from app.workers.import_queue import ImportJobQueue

router = APIRouter()

STREAM_INTERVAL_SECONDS = 5
# 5 minutes at 5s intervals
STREAM_MAX_IDLE_TICKS = 60


def _get_job_or_404(queue: ImportJobQueue, job_id: str):
    job = queue.get_job_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get(
    "/",
    summary="List import jobs",
    response_model=list[JobStatus],
)
def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status_filter: str | None = Query(
        None,
        alias="status",
        description="Filter by status (queued, running, success, failed)",
    ),
    queue: ImportJobQueue = Depends(get_import_queue),
) -> list[JobStatus]:
    """Return jobs newest first, optionally filtered by status."""
    if status_filter and status_filter not in JOB_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status_filter}")
    return [serialize_job(job) for job in queue.list_jobs(status=status_filter, limit=limit)]


@router.post(
    "/",
    summary="Enqueue an import job",
    response_model=JobStatus,
    status_code=status.HTTP_201_CREATED,
)
def enqueue_job(
    payload: JobCreate,
    queue: ImportJobQueue = Depends(get_import_queue),
) -> JobStatus:
    job = queue.enqueue_job(payload.source_id, payload.type, payload.created_by)
    return serialize_job(job)


@router.get(
    "/{job_id}",
    summary="Fetch job metadata and latest progress",
    response_model=JobStatus,
)
def get_job(
    job_id: str,
    queue: ImportJobQueue = Depends(get_import_queue),
) -> JobStatus:
    """Expose job state for polling dashboards and audit logs."""
    job = _get_job_or_404(queue, job_id)
    return serialize_job(job, fetch_progress(job_id))


@router.get(
    "/{job_id}/logs",
    summary="Job log entries, oldest first",
    response_model=list[JobLogEntry],
)
def get_job_logs(
    job_id: str,
    queue: ImportJobQueue = Depends(get_import_queue),
) -> list[JobLogEntry]:
    _get_job_or_404(queue, job_id)
    return [JobLogEntry.model_validate(entry) for entry in queue.get_job_logs(job_id)]


@router.get(
    "/{job_id}/errors",
    summary="Recorded failures, oldest first",
    response_model=list[JobErrorEntry],
)
def get_job_errors(
    job_id: str,
    queue: ImportJobQueue = Depends(get_import_queue),
) -> list[JobErrorEntry]:
    _get_job_or_404(queue, job_id)
    return [JobErrorEntry.model_validate(entry) for entry in queue.get_job_errors(job_id)]


@router.get(
    "/{job_id}/stream",
    summary="Server-Sent Events stream for real-time progress",
)
async def stream_job_progress(
    job_id: str,
    queue: ImportJobQueue = Depends(get_import_queue),
) -> StreamingResponse:
    """Stream job progress updates via Server-Sent Events (SSE).

    Each ``data:`` event carries the JSON job status. The stream closes
    once the job reaches a terminal state, or after five minutes without
    progress.
    """
    _get_job_or_404(queue, job_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_processed = -1
        idle_ticks = 0
        while True:
            job = queue.get_job_status(job_id)
            if job is None:
                yield 'event: error\ndata: {"error": "Job not found"}\n\n'
                break

            if job.processed_items != last_processed:
                last_processed = job.processed_items
                idle_ticks = 0
            else:
                idle_ticks += 1

            yield f"data: {serialize_job(job).model_dump_json()}\n\n"

            if job.status in (STATUS_SUCCESS, STATUS_FAILED):
                yield "event: close\ndata: {}\n\n"
                break
            if idle_ticks > STREAM_MAX_IDLE_TICKS:
                yield "event: timeout\ndata: {}\n\n"
                break

            await asyncio.sleep(STREAM_INTERVAL_SECONDS)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
