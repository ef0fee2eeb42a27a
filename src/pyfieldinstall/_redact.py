"""Scrub values before they reach a DEBUG log line.

Telemetry requests carry an API key and team documents carry personal
data. Secrets are replaced outright; e-mail addresses keep just enough
to tell records apart.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from pydantic import BaseModel

_REDACTED = "<redacted>"

_SECRET_KEYS: frozenset[str] = frozenset(
    {"x-api-key", "apikey", "api_key", "authorization", "cookie", "password", "token"}
)
_PERSONAL_KEYS: frozenset[str] = frozenset({"email", "phone", "phonenumber"})

_MAX_DEPTH = 20


def mask_email(address: str) -> str:
    """``ali@example.com`` -> ``a***@example.com``."""
    local, sep, domain = address.strip().partition("@")
    if not sep or not local or not domain:
        return _REDACTED
    return f"{local[0]}***@{domain}"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a log-safe copy of *value*.

    Mappings are walked recursively, pydantic models are dumped with their
    document aliases first, and long strings are truncated.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return f"{value[:max_string]}…<truncated>" if len(value) > max_string else value
    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return redact_for_log(value.model_dump(by_alias=True), max_string=max_string, _depth=_depth + 1)

    if isinstance(value, Mapping):
        scrubbed: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SECRET_KEYS:
                scrubbed[key] = _REDACTED
            elif lowered in _PERSONAL_KEYS:
                scrubbed[key] = mask_email(v) if isinstance(v, str) else _REDACTED
            else:
                scrubbed[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return scrubbed

    if isinstance(value, Sequence) and not isinstance(value, bytearray):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
