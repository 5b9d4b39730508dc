"""Polling queue that claims and runs catalog import jobs.

One poll thread per queue instance looks for the oldest queued job,
claims it with a conditional update and hands it to the registered
processor on a bounded thread pool. Several instances, in one process
or many, may poll the same job table; the conditional update decides
which of them runs a job.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
import threading
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import CONCURRENT_JOBS, MAX_RETRIES, POLL_INTERVAL_MS, Settings, get_settings
from app.core.exceptions import ImportProcessingError, InvalidJobTypeError
from app.db.models.import_job import (
    JOB_STATUSES,
    JOB_TYPES,
    LOG_LEVELS,
    STATUS_QUEUED,
    STATUS_RUNNING,
    ImportJob,
    ImportJobError,
    ImportJobLog,
    utcnow,
)
from app.repositories.import_jobs import ImportJobRepository
from app.services.retry_policy import OUTCOME_CANCELLED, Resolution, resolve_attempt
from app.workers.cancellation import CancellationToken

logger = logging.getLogger(__name__)

ProgressPublisher = Callable[..., None]


class JobHandle:
    """What a processor gets to see and touch of its claimed job.

    Progress and checkpoint writes are scoped to this claim's attempt
    number: once the job has been finalized or re-claimed, they are
    dropped instead of overwriting the newer attempt's state.
    """

    def __init__(self, queue: ImportJobQueue, job: ImportJob) -> None:
        self._queue = queue
        self.job = job

    @property
    def id(self) -> str:
        return self.job.id

    @property
    def attempt(self) -> int:
        return self.job.attempt

    @property
    def source_id(self) -> str:
        return self.job.source_id

    @property
    def type(self) -> str:
        return self.job.type

    @property
    def last_checkpoint(self) -> str | None:
        return self.job.last_checkpoint

    def update_progress(self, processed_items: int, total_items: int) -> bool:
        return self._queue.update_progress(self.id, processed_items, total_items, attempt=self.attempt)

    def update_checkpoint(self, checkpoint: str) -> bool:
        return self._queue.update_checkpoint(self.id, checkpoint, attempt=self.attempt)

    def log(self, level: str, message: str, details: dict[str, Any] | None = None) -> None:
        self._queue.log(self.id, level, message, details)

    def log_error(
        self,
        stage: str,
        message: str,
        code: str | None = None,
        external_id: str | None = None,
    ) -> None:
        """Record an item-level problem that does not fail the attempt."""
        self._queue.log_error(self.id, stage, message, code, external_id)


Processor = Callable[[JobHandle, CancellationToken], Any]


@dataclass(eq=False)
class _Execution:
    job_id: str
    attempt: int
    token: CancellationToken
    future: Future | None = field(default=None, repr=False)


def _error_details(exc: BaseException) -> tuple[str, str, str | None, str | None]:
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, ImportProcessingError):
        return exc.stage, message, exc.code, exc.external_id
    code = getattr(exc, "code", None)
    return "process", message, (str(code) if code is not None else None), None


class ImportJobQueue:
    """Claims queued import jobs and runs them with bounded concurrency."""

    def __init__(
        self,
        repository: ImportJobRepository,
        *,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        concurrent_jobs: int = CONCURRENT_JOBS,
        max_retries: int = MAX_RETRIES,
        progress_publisher: ProgressPublisher | None = None,
        name: str = "import-queue",
    ) -> None:
        if concurrent_jobs < 1:
            raise ValueError("concurrent_jobs must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.repository = repository
        self.poll_interval_ms = poll_interval_ms
        self.concurrent_jobs = concurrent_jobs
        self.max_retries = max_retries
        self.name = name
        self._progress_publisher = progress_publisher
        self._processor: Processor | None = None

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._claim_lock = threading.Lock()
        self._active: dict[str, _Execution] = {}
        # Cancelled by stop() but not settled yet; still occupies a pool slot
        self._abandoned: set[_Execution] = set()
        self._running = False
        self._closed = False
        # Bumped by every stop(); a claim that straddles a stop is handed back
        self._stop_generation = 0
        self._stop_event: threading.Event | None = None
        self._poll_thread: threading.Thread | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=concurrent_jobs,
            thread_name_prefix=f"{name}-job",
        )

    @classmethod
    def from_settings(
        cls,
        session_factory: sessionmaker[Session],
        settings: Settings | None = None,
        *,
        publish: bool = True,
    ) -> ImportJobQueue:
        settings = settings or get_settings()
        publisher = None
        if publish:
            from app.services.progress_tracker import publish_progress

            publisher = publish_progress
        return cls(
            ImportJobRepository(session_factory),
            poll_interval_ms=settings.import_poll_interval_ms,
            concurrent_jobs=settings.import_concurrent_jobs,
            max_retries=settings.import_max_retries,
            progress_publisher=publisher,
        )

    # ---------- Lifecycle ----------
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_job_ids(self) -> set[str]:
        with self._lock:
            return set(self._active)

    @property
    def in_flight(self) -> int:
        """Executions holding a pool slot, including ones abandoned by stop()."""
        with self._lock:
            return len(self._active) + len(self._abandoned)

    def register_processor(self, processor: Processor) -> None:
        self._processor = processor

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self.name} has been closed")
            if self._running:
                logger.info(f"{self.name} already running")
                return
            self._running = True
            stop_event = threading.Event()
            self._stop_event = stop_event
            thread = threading.Thread(
                target=self._poll_loop,
                args=(stop_event,),
                name=f"{self.name}-poll",
                daemon=True,
            )
            self._poll_thread = thread
        logger.info(
            f"Starting {self.name} (poll={self.poll_interval_ms}ms, "
            f"concurrency={self.concurrent_jobs}, max_retries={self.max_retries})"
        )
        thread.start()

    def stop(self) -> None:
        """Stop polling and ask every running job to cancel.

        Does not wait for processors to return; see wait_for_idle().
        """
        with self._lock:
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
            self._stop_generation += 1
            for job_id, execution in self._active.items():
                logger.info(f"Cancelling job {job_id}")
                execution.token.cancel()
                self._abandoned.add(execution)
            self._active.clear()
        logger.info(f"Stopped {self.name}")

    def wait_for_idle(self, timeout: float | None = None) -> bool:
        """Block until every dispatched job has settled; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._active and not self._abandoned, timeout)

    def close(self, wait: bool = False) -> None:
        self.stop()
        with self._lock:
            self._closed = True
            thread = self._poll_thread
        self._executor.shutdown(wait=wait)
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join()

    def _poll_loop(self, stop_event: threading.Event) -> None:
        interval = self.poll_interval_ms / 1000
        while not stop_event.is_set():
            try:
                if self.in_flight < self.concurrent_jobs:
                    self.run_once()
            except Exception:
                logger.exception(f"{self.name} poll error")
            stop_event.wait(interval)

    # ---------- Claim and dispatch ----------
    def run_once(self) -> ImportJob | None:
        """Run one claim-and-dispatch cycle; returns the dispatched job, if any."""
        if self._processor is None:
            return None

        with self._claim_lock:
            if self.in_flight >= self.concurrent_jobs:
                return None

            with self._lock:
                generation = self._stop_generation

            candidate = self.repository.find_oldest_queued()
            if candidate is None:
                return None

            if self.repository.claim(candidate.id, started_at=utcnow()) == 0:
                # Another worker claimed it between our read and write
                logger.debug(f"Lost claim race for job {candidate.id}")
                return None

            job = self.repository.get_job(candidate.id)
            if job is None:
                return None

            if not self._dispatch(job, generation):
                return None
            return job

    def _dispatch(self, job: ImportJob, generation: int) -> bool:
        execution = _Execution(job_id=job.id, attempt=job.attempt, token=CancellationToken(job.id))
        with self._lock:
            stopped = self._stop_generation != generation
            if not stopped:
                self._active[job.id] = execution
        if stopped:
            logger.info(f"{self.name} stopped while claiming job {job.id}, returning it to the queue")
            self._hand_back(job)
            return False

        try:
            execution.future = self._executor.submit(self._execute, execution, job)
        except RuntimeError:
            # Pool already shut down
            self._release(execution)
            self._hand_back(job)
            raise
        logger.info(f"Dispatched job {job.id} (attempt {job.attempt})")
        return True

    def _hand_back(self, job: ImportJob) -> None:
        """Return a claimed but never started job to the queue."""
        self.repository.transition(
            job.id,
            expected_status=STATUS_RUNNING,
            attempt=job.attempt,
            status=STATUS_QUEUED,
            started_at=None,
        )

    def _execute(self, execution: _Execution, job: ImportJob) -> None:
        processor = self._processor
        try:
            try:
                self.log(job.id, "info", f"Starting job {job.id}", {"attempt": job.attempt})
                processor(JobHandle(self, job), execution.token)
            except Exception as exc:
                self._finalize(execution, exc)
            else:
                self._finalize(execution, None)
        except Exception:
            logger.exception(f"Failed to finalize job {job.id}")
        finally:
            self._release(execution)

    def _release(self, execution: _Execution) -> None:
        with self._lock:
            if self._active.get(execution.job_id) is execution:
                del self._active[execution.job_id]
            self._abandoned.discard(execution)
            self._idle.notify_all()

    def _finalize(self, execution: _Execution, exc: Exception | None) -> Resolution:
        job_id = execution.job_id
        cancelled = execution.token.cancelled
        latest = self.repository.get_job(job_id)
        error_count = latest.error_count if latest is not None else 0

        if exc is not None and not cancelled:
            logger.error(f"Job {job_id} failed: {exc}", exc_info=exc)
            stage, message, code, external_id = _error_details(exc)
            self.log_error(job_id, stage, message, code, external_id, retry_count=error_count)

        resolution = resolve_attempt(
            job_id,
            error_count=error_count,
            max_retries=self.max_retries,
            now=utcnow(),
            cancelled=cancelled,
            failed=exc is not None,
        )
        updated = self.repository.transition(
            job_id,
            expected_status=STATUS_RUNNING,
            attempt=execution.attempt,
            **resolution.values,
        )
        if updated == 0:
            logger.warning(f"Job {job_id} not in running state, skipping {resolution.outcome} update")
            if resolution.outcome == OUTCOME_CANCELLED:
                self.log(job_id, resolution.log_level, resolution.message)
            return resolution

        self.log(job_id, resolution.log_level, resolution.message)
        if latest is not None:
            self._publish(job_id, latest.processed_items, latest.total_items, status=resolution.status)
        return resolution

    # ---------- Enqueue / progress ----------
    def enqueue_job(self, source_id: str, job_type: str, created_by: str) -> ImportJob:
        if job_type not in JOB_TYPES:
            raise InvalidJobTypeError(f"Job type must be one of {', '.join(JOB_TYPES)}, got {job_type!r}")
        job = self.repository.create_job(source_id=source_id, job_type=job_type, created_by=created_by)
        self.log(job.id, "info", f"Job enqueued: {job_type} import from source {source_id}")
        return job

    def update_progress(
        self,
        job_id: str,
        processed_items: int,
        total_items: int,
        *,
        attempt: int | None = None,
    ) -> bool:
        if processed_items < 0 or total_items < 0:
            raise ValueError("processed_items and total_items must be >= 0")
        updated = self.repository.update_job_fields(
            job_id,
            attempt=attempt,
            processed_items=processed_items,
            total_items=total_items,
        )
        if updated == 0:
            self._warn_dropped_write("progress", job_id, attempt)
            return False
        self._publish(job_id, processed_items, total_items, status=STATUS_RUNNING)
        return True

    def update_checkpoint(self, job_id: str, checkpoint: str, *, attempt: int | None = None) -> bool:
        updated = self.repository.update_job_fields(job_id, attempt=attempt, last_checkpoint=checkpoint)
        if updated == 0:
            self._warn_dropped_write("checkpoint", job_id, attempt)
            return False
        return True

    def _warn_dropped_write(self, what: str, job_id: str, attempt: int | None) -> None:
        if attempt is None:
            logger.warning(f"Dropped {what} update for unknown job {job_id}")
        else:
            logger.warning(f"Dropped stale {what} update for job {job_id}: attempt {attempt} no longer holds it")

    def _publish(self, job_id: str, processed: int, total: int, *, status: str) -> None:
        if self._progress_publisher is None:
            return
        try:
            self._progress_publisher(job_id, processed, total, status=status)
        except Exception:
            logger.warning(f"Failed to publish progress for job {job_id}", exc_info=True)

    # ---------- Logs / errors ----------
    def log(
        self,
        job_id: str,
        level: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> ImportJobLog:
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
        return self.repository.add_log(job_id, level, message, details)

    def log_error(
        self,
        job_id: str,
        stage: str,
        message: str,
        code: str | None = None,
        external_id: str | None = None,
        *,
        retry_count: int = 0,
    ) -> ImportJobError:
        return self.repository.add_error(
            job_id,
            stage=stage,
            message=message,
            code=code,
            external_id=external_id,
            retry_count=retry_count,
        )

    # ---------- Queries ----------
    def get_job_status(self, job_id: str) -> ImportJob | None:
        return self.repository.get_job(job_id)

    def get_job_logs(self, job_id: str) -> list[ImportJobLog]:
        return self.repository.list_logs(job_id)

    def get_job_errors(self, job_id: str) -> list[ImportJobError]:
        return self.repository.list_errors(job_id)

    def list_jobs(self, *, status: str | None = None, limit: int = 50) -> list[ImportJob]:
        return self.repository.list_jobs(status=status, limit=limit)

    def count_by_status(self) -> dict[str, int]:
        counts = dict.fromkeys(JOB_STATUSES, 0)
        counts.update(self.repository.count_by_status())
        return counts
