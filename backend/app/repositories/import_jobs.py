"""Persistence for import jobs, their logs and errors.

Every status change goes through a conditional ``UPDATE ... WHERE status = ?``
whose affected-row count tells the caller whether it won. That guard is the
only mutual exclusion between queue instances; there are no row locks.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import threading
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.db.models.import_job import (
    STATUS_QUEUED,
    STATUS_RUNNING,
    ImportJob,
    ImportJobError,
    ImportJobLog,
    utcnow,
)
from app.db.models.import_source import ImportSource

_enqueue_lock = threading.Lock()
_last_enqueued_at: datetime | None = None


def _enqueue_timestamp() -> datetime:
    """Strictly increasing within the process so FIFO order survives clock ties."""
    global _last_enqueued_at
    with _enqueue_lock:
        now = utcnow()
        if _last_enqueued_at is not None and now <= _last_enqueued_at:
            now = _last_enqueued_at + timedelta(microseconds=1)
        _last_enqueued_at = now
        return now


class ImportJobRepository:
    """Short-lived session per call; returned records are detached snapshots."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # ---------- Jobs: enqueue / claim / finalize ----------
    def create_job(self, *, source_id: str, job_type: str, created_by: str) -> ImportJob:
        job = ImportJob(
            source_id=source_id,
            type=job_type,
            status=STATUS_QUEUED,
            created_by=created_by,
            total_items=0,
            processed_items=0,
            error_count=0,
            attempt=0,
            created_at=_enqueue_timestamp(),
        )
        with self._session_factory.begin() as session:
            session.add(job)
        return job

    def find_oldest_queued(self) -> ImportJob | None:
        with self._session_factory() as session:
            return session.scalars(
                select(ImportJob)
                .where(ImportJob.status == STATUS_QUEUED)
                .order_by(ImportJob.created_at.asc(), ImportJob.id.asc())
                .limit(1)
            ).first()

    def claim(self, job_id: str, *, started_at: datetime) -> int:
        """Move a job from queued to running; returns rows affected (0 or 1)."""
        with self._session_factory.begin() as session:
            result = session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id, ImportJob.status == STATUS_QUEUED)
                .values(
                    status=STATUS_RUNNING,
                    started_at=started_at,
                    attempt=ImportJob.attempt + 1,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def transition(
        self,
        job_id: str,
        *,
        expected_status: str,
        attempt: int | None = None,
        **values: Any,
    ) -> int:
        """Apply ``values`` only while the job still has ``expected_status``.

        When ``attempt`` is given the claim generation must match as well,
        so a superseded attempt can never move a newer one.
        """
        conditions = [ImportJob.id == job_id, ImportJob.status == expected_status]
        if attempt is not None:
            conditions.append(ImportJob.attempt == attempt)
        with self._session_factory.begin() as session:
            result = session.execute(
                update(ImportJob)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    # ---------- Progress / checkpoint ----------
    def update_job_fields(self, job_id: str, *, attempt: int | None = None, **values: Any) -> int:
        """Write-through update of progress fields.

        Without ``attempt`` the write is unconditional. With it, the write
        only lands while that claim generation still holds the job.
        """
        if attempt is not None:
            return self.transition(job_id, expected_status=STATUS_RUNNING, attempt=attempt, **values)
        with self._session_factory.begin() as session:
            result = session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    # ---------- Logs / errors ----------
    def add_log(
        self,
        job_id: str,
        level: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> ImportJobLog:
        entry = ImportJobLog(job_id=job_id, level=level, message=message, details=details, created_at=utcnow())
        with self._session_factory.begin() as session:
            session.add(entry)
        return entry

    def add_error(
        self,
        job_id: str,
        *,
        stage: str,
        message: str,
        code: str | None = None,
        external_id: str | None = None,
        retry_count: int = 0,
    ) -> ImportJobError:
        entry = ImportJobError(
            job_id=job_id,
            stage=stage,
            error_message=message,
            error_code=code,
            external_id=external_id,
            retry_count=retry_count,
            resolved=False,
            created_at=utcnow(),
        )
        with self._session_factory.begin() as session:
            session.add(entry)
        return entry

    # ---------- Queries ----------
    def get_job(self, job_id: str) -> ImportJob | None:
        with self._session_factory() as session:
            return session.get(ImportJob, job_id)

    def list_jobs(self, *, status: str | None = None, limit: int = 50) -> list[ImportJob]:
        query = select(ImportJob)
        if status:
            query = query.where(ImportJob.status == status)
        query = query.order_by(ImportJob.created_at.desc()).limit(limit)
        with self._session_factory() as session:
            return list(session.scalars(query).all())

    def count_by_status(self) -> dict[str, int]:
        with self._session_factory() as session:
            rows = session.execute(
                select(ImportJob.status, func.count(ImportJob.id)).group_by(ImportJob.status)
            ).all()
        return {status: count for status, count in rows}

    def list_logs(self, job_id: str) -> list[ImportJobLog]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(ImportJobLog)
                    .where(ImportJobLog.job_id == job_id)
                    .order_by(ImportJobLog.created_at.asc(), ImportJobLog.id.asc())
                ).all()
            )

    def list_errors(self, job_id: str) -> list[ImportJobError]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(ImportJobError)
                    .where(ImportJobError.job_id == job_id)
                    .order_by(ImportJobError.created_at.asc(), ImportJobError.id.asc())
                ).all()
            )

    def get_source(self, source_id: str) -> ImportSource | None:
        with self._session_factory() as session:
            return session.get(ImportSource, source_id)

    def mark_source_synced(self, source_id: str, *, synced_at: datetime) -> int:
        with self._session_factory.begin() as session:
            result = session.execute(
                update(ImportSource)
                .where(ImportSource.id == source_id)
                .values(last_sync_at=synced_at)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
