"""Business logic for chunked CSV catalog ingestion."""

from __future__ import annotations

import csv
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models.product import Product
from app.utils.csv_validator import ValidationError, normalize_row, validate_headers

logger = logging.getLogger(__name__)

BASE_CHUNK_SIZE = 1000

InvalidRowCallback = Callable[[int, str], None]


@dataclass
class CsvChunk:
    rows: list[dict]
    # Data rows consumed from the start of the file, valid or not
    end_row: int


def _open_reader(handle) -> csv.DictReader:
    reader = csv.DictReader(handle)
    if not reader.fieldnames:
        raise ValueError("CSV file appears to be empty or invalid")
    try:
        validate_headers(reader.fieldnames)
    except ValidationError as e:
        raise ValueError(f"Invalid CSV headers: {str(e)}") from e
    return reader


def iter_csv_chunks(
    file_path: Path,
    chunk_size: int = BASE_CHUNK_SIZE,
    *,
    start_row: int = 0,
    on_invalid_row: InvalidRowCallback | None = None,
) -> Iterator[CsvChunk]:
    """Yield normalized rows in batches, skipping the first ``start_row`` data rows.

    Invalid rows are skipped and reported through ``on_invalid_row`` with
    their 1-based data row number; they still count towards ``end_row`` so
    a resumed import never revisits them.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    try:
        with file_path.open("r", encoding="utf-8", newline="") as handle:
            reader = _open_reader(handle)

            batch: list[dict] = []
            row_num = 0
            consumed = 0
            for row in reader:
                row_num += 1
                if row_num <= start_row:
                    continue
                consumed += 1
                try:
                    batch.append(normalize_row(row))
                except ValidationError as e:
                    logger.warning(f"Skipping invalid row {row_num}: {e}")
                    if on_invalid_row is not None:
                        on_invalid_row(row_num, str(e))

                if consumed % chunk_size == 0:
                    yield CsvChunk(rows=batch, end_row=row_num)
                    batch = []

            if consumed % chunk_size:
                yield CsvChunk(rows=batch, end_row=row_num)

    except FileNotFoundError:
        raise ValueError(f"CSV file not found: {file_path}")
    except PermissionError:
        raise ValueError(f"Permission denied reading file: {file_path}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error: {str(e)}") from e
    except csv.Error as e:
        raise ValueError(f"CSV parsing error: {str(e)}") from e


def count_rows(file_path: Path) -> int:
    """Return the total number of data rows in the CSV (excluding headers)."""
    try:
        with file_path.open("r", encoding="utf-8", newline="") as handle:
            return sum(1 for _ in _open_reader(handle))
    except FileNotFoundError:
        raise ValueError(f"CSV file not found: {file_path}")
    except PermissionError:
        raise ValueError(f"Permission denied reading file: {file_path}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error: {str(e)}") from e
    except csv.Error as e:
        raise ValueError(f"CSV parsing error: {str(e)}") from e


def upsert_products(rows: list[dict], db: Session, *, source_id: str | None = None) -> dict[str, int]:
    """Perform bulk upserts using SKU case-insensitive uniqueness."""
    if not rows:
        return {"inserted": 0, "updated": 0}

    # Later rows win when a chunk repeats a SKU
    normalized_map: dict[str, dict] = {}
    for row in rows:
        sku_lower = row["sku"].lower().strip()
        if sku_lower:
            normalized_map[sku_lower] = row

    try:
        existing_products = (
            db.execute(select(Product).where(func.lower(Product.sku).in_(list(normalized_map.keys()))))
            .scalars()
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching existing products: {e}", exc_info=True)
        raise

    updated = 0
    for product in existing_products:
        payload = normalized_map.pop(product.sku.lower(), None)
        if not payload:
            continue
        product.name = payload["name"]
        product.description = payload["description"]
        product.active = payload["active"]
        product.is_deleted = False  # Restore if was deleted
        product.source_id = source_id
        updated += 1

    inserted = 0
    for payload in normalized_map.values():
        db.add(
            Product(
                sku=payload["sku"],
                name=payload["name"],
                description=payload["description"],
                active=payload["active"],
                is_deleted=False,
                source_id=source_id,
            )
        )
        inserted += 1

    db.flush()
    return {"inserted": inserted, "updated": updated}
