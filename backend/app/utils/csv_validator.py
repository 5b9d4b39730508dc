"""Validate CSV headers and enforce field constraints."""

from __future__ import annotations

from typing import Any


class ValidationError(ValueError):
    """Custom exception for CSV validation errors."""

    pass


REQUIRED_HEADERS = ["sku", "name"]
OPTIONAL_HEADERS = ["description", "active"]

FALSE_VALUES = {"0", "false", "no", "n", "inactive"}


def validate_headers(headers: list[str] | None) -> None:
    """Ensure CSV contains the required columns before processing."""
    if not headers:
        raise ValidationError("CSV requires a header row with at least sku,name columns")
    normalized = [header.strip().lower() for header in headers]
    missing = [field for field in REQUIRED_HEADERS if field not in normalized]
    if missing:
        raise ValidationError(f"Missing required column(s): {', '.join(missing)}")


def normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    """Clean individual row (trim strings, enforce required fields)."""
    lowered = {str(key).strip().lower(): value for key, value in row.items() if key is not None}

    def _clean(key: str) -> str:
        value = lowered.get(key)
        return value.strip() if isinstance(value, str) else ""

    sku = _clean("sku")
    name = _clean("name")
    if not sku:
        raise ValidationError("Row has an empty SKU")
    if not name:
        raise ValidationError(f"Row for SKU '{sku}' is missing a name")

    active_raw = _clean("active").lower()
    return {
        "sku": sku,
        "name": name,
        "description": _clean("description") or None,
        "active": active_raw not in FALSE_VALUES if active_raw else True,
    }
