"""Import job records: the shared job table plus its append-only logs and errors."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.types import DateTime

from app.db.base import Base, JSONType

JOB_TYPES = ("full", "delta")

STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
JOB_STATUSES = (STATUS_QUEUED, STATUS_RUNNING, STATUS_SUCCESS, STATUS_FAILED)

LOG_LEVELS = ("info", "warn", "error")
ERROR_STAGES = ("fetch", "transform", "persist", "webhook", "process")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    source_id = Column(
        String(36),
        ForeignKey("import_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(16), nullable=False)
    status = Column(String(32), nullable=False, default=STATUS_QUEUED)
    created_by = Column(String(64), nullable=False)
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    # Claim generation; bumped by every successful claim
    attempt = Column(Integer, nullable=False, default=0)
    last_checkpoint = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("ix_import_jobs_status_created", "status", "created_at"),)

    def __repr__(self) -> str:
        return f"<ImportJob {self.id} {self.type} {self.status} attempt={self.attempt}>"


class ImportJobLog(Base):
    __tablename__ = "import_job_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level = Column(String(8), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSONType)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ImportJobError(Base):
    __tablename__ = "import_job_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage = Column(String(32), nullable=False)
    error_message = Column(Text, nullable=False)
    error_code = Column(String(64))
    external_id = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
