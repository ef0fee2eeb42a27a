"""Normalization helpers.

Centralizes defensive parsing of loosely-typed store documents and
spreadsheet cells.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1e11


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value == "--":
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def cell_text(value: Any) -> str:
    """Render a spreadsheet cell as stripped text (``""`` for empty cells)."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a store timestamp into an aware UTC datetime.

    Accepts datetimes, epoch seconds or milliseconds, ISO-8601 strings,
    ``{"seconds": ..., "nanoseconds": ...}`` mappings (and the
    underscore-prefixed variant) and objects exposing ``to_datetime()``.
    Returns ``None`` for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        seconds_f = safe_float(seconds)
        if seconds_f is None:
            return None
        return datetime.fromtimestamp(seconds_f + float(nanos) / 1e9, tz=UTC)
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return parse_timestamp(to_datetime())
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts > _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)
