"""Route claimed jobs to the adapter for their import source's platform."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
from typing import Any

from app.core.exceptions import ImportSourceNotFoundError, UnsupportedPlatformError
from app.db.models.import_job import utcnow
from app.db.models.import_source import ImportSource
from app.repositories.import_jobs import ImportJobRepository
from app.workers.cancellation import CancellationToken
from app.workers.import_queue import JobHandle

logger = logging.getLogger(__name__)

PlatformAdapter = Callable[[JobHandle, CancellationToken, ImportSource], Any]


class PlatformProcessor:
    """Queue processor that looks up the job's source and dispatches on platform."""

    def __init__(self, repository: ImportJobRepository, adapters: Mapping[str, PlatformAdapter]) -> None:
        self.repository = repository
        self.adapters = dict(adapters)

    def __call__(self, handle: JobHandle, token: CancellationToken) -> None:
        source = self.repository.get_source(handle.source_id)
        if source is None:
            raise ImportSourceNotFoundError(handle.source_id)

        adapter = self.adapters.get(source.platform)
        if adapter is None:
            raise UnsupportedPlatformError(source.platform)

        logger.info(f"Running {source.platform} {handle.type} import for job {handle.id}")
        adapter(handle, token, source)

        if not token.cancelled:
            self.repository.mark_source_synced(source.id, synced_at=utcnow())
