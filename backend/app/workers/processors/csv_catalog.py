"""Resumable product import from a CSV file on local storage."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.exceptions import ImportProcessingError
from app.db.models.import_source import ImportSource
from app.services import csv_ingest
from app.workers.cancellation import CancellationToken
from app.workers.import_queue import JobHandle

logger = logging.getLogger(__name__)

CHECKPOINT_RE = re.compile(r"^row:(\d+)$")


def parse_row_checkpoint(checkpoint: str | None) -> int:
    """Rows already imported according to a ``row:<n>`` checkpoint (0 if none)."""
    if not checkpoint:
        return 0
    match = CHECKPOINT_RE.match(checkpoint.strip())
    if not match:
        logger.warning(f"Ignoring unrecognized checkpoint {checkpoint!r}")
        return 0
    return int(match.group(1))


class CsvCatalogImporter:
    """Upserts products chunk by chunk, checkpointing after every chunk.

    A requeued job picks up after the last committed chunk. Cancellation
    is checked before each chunk so a stopped worker leaves at most one
    chunk half-done, and that chunk is rolled back.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        chunk_size: int = csv_ingest.BASE_CHUNK_SIZE,
    ) -> None:
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    def __call__(self, handle: JobHandle, token: CancellationToken, source: ImportSource) -> None:
        path = (source.meta or {}).get("path")
        if not path:
            raise ImportProcessingError(
                f"CSV source {source.id} has no file path",
                stage="fetch",
                code="missing_path",
            )
        file_path = Path(path)

        try:
            total = csv_ingest.count_rows(file_path)
        except ValueError as e:
            raise ImportProcessingError(str(e), stage="fetch", code="unreadable_csv") from e

        start_row = min(parse_row_checkpoint(handle.last_checkpoint), total)
        if start_row:
            handle.log("info", f"Resuming import at row {start_row + 1}", {"checkpoint": handle.last_checkpoint})
        handle.update_progress(start_row, total)

        # Invalid rows of a chunk are recorded only after that chunk commits
        pending_invalid: list[tuple[int, str]] = []

        def _report_invalid(row_num: int, message: str) -> None:
            pending_invalid.append((row_num, message))

        inserted = updated = 0
        processed = start_row
        try:
            chunks = csv_ingest.iter_csv_chunks(
                file_path,
                self.chunk_size,
                start_row=start_row,
                on_invalid_row=_report_invalid,
            )
            for chunk in chunks:
                token.raise_if_cancelled()
                with self.session_factory.begin() as session:
                    stats = csv_ingest.upsert_products(chunk.rows, session, source_id=source.id)
                inserted += stats["inserted"]
                updated += stats["updated"]
                processed = chunk.end_row
                handle.update_progress(processed, total)
                handle.update_checkpoint(f"row:{processed}")
                for row_num, message in pending_invalid:
                    handle.log_error("transform", message, code="invalid_row", external_id=f"row:{row_num}")
                pending_invalid.clear()
        except ValueError as e:
            raise ImportProcessingError(str(e), stage="transform", code="invalid_csv") from e
        except SQLAlchemyError as e:
            raise ImportProcessingError(str(e), stage="persist", code="db_error") from e

        handle.log(
            "info",
            f"Imported {processed}/{total} rows",
            {"inserted": inserted, "updated": updated, "resumed_from": start_row},
        )
