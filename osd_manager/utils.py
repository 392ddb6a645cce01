"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float, split_csv)
- Storage coercion: JSON-encoded values and device references (load_json, device_ref_id)
- Number coercion: Safe float conversion with None fallback (coerce_float)

These utilities are used throughout the OSD manager for configuration parsing and
for reading the loosely typed settings store.
"""

from __future__ import annotations

import json
from typing import Any


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def coerce_float(value: Any) -> float | None:
    """Return ``value`` as a float, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def load_json(value: str | None, default: Any = None) -> Any:
    """Decode a JSON-encoded store value, returning ``default`` on failure."""
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def device_ref_id(value: Any) -> str | None:
    """Extract a device id from a stored device reference.

    References are written either as a bare id or as a JSON object with an
    ``id`` member. Already decoded objects are accepted too.
    """
    if isinstance(value, dict):
        ref = value.get("id")
        return str(ref) if ref else None
    if not value:
        return None
    stripped = str(value).strip()
    if stripped.startswith("{"):
        decoded = load_json(stripped)
        if isinstance(decoded, dict):
            ref = decoded.get("id")
            return str(ref) if ref else None
        return None
    if len(stripped) >= 2 and stripped[0] == stripped[-1] == '"':
        decoded = load_json(stripped)
        return str(decoded) if decoded else None
    return stripped or None
