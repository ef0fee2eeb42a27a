from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pyfieldinstall._redact import mask_email, redact_for_log
from pyfieldinstall.models import TeamMember


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "deviceId": "DEV001",
        "X-API-KEY": "secret",
        "headers": {"Authorization": "Bearer abc", "accept": "application/json"},
        "members": [{"name": "Ali", "email": "ali@example.com", "phone": "+966500000000"}],
        "password": "pw",
    }

    redacted = redact_for_log(payload)
    assert redacted["deviceId"] == "DEV001"
    assert redacted["X-API-KEY"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["headers"]["Authorization"] == "<redacted>"
    assert redacted["headers"]["accept"] == "application/json"
    assert redacted["members"][0] == {"name": "Ali", "email": "a***@example.com", "phone": "<redacted>"}


@pytest.mark.parametrize(
    ("address", "expected"),
    [
        ("ali@example.com", "a***@example.com"),
        (" s@x.org ", "s***@x.org"),
        ("no-at-sign", "<redacted>"),
        ("@x", "<redacted>"),
    ],
)
def test_mask_email(address: str, expected: str) -> None:
    assert mask_email(address) == expected


def test_redact_for_log_dumps_models_with_document_keys() -> None:
    member = TeamMember(id="u1", name="Sara", email="sara@example.com", added_at=datetime(2026, 1, 1, tzinfo=UTC))

    redacted = redact_for_log(member)

    assert redacted["email"] == "s***@example.com"
    assert redacted["addedAt"] == "2026-01-01T00:00:00+00:00"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_summarizes_bytes_and_objects() -> None:
    redacted = redact_for_log({"payload": b"\x00\x01\x02", "when": object()})

    assert redacted["payload"] == "<bytes:3b>"
    assert redacted["when"].startswith("<object object")
