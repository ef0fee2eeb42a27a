"""Installer-vs-telemetry reading comparison."""

from __future__ import annotations

import math
from enum import StrEnum


class TelemetryVerdict(StrEnum):
    NO_DATA = "no_data"
    PRE_VERIFIED = "pre_verified"
    NEEDS_REVIEW = "needs_review"
    AUTO_REJECTED = "auto_rejected"


def percentage_difference(sensor_reading: float | None, server_reading: float | None) -> float | None:
    """Return ``|server - sensor| / sensor * 100``.

    ``None`` when either value is missing, non-finite, or the sensor
    reading is not positive (no meaningful base for a percentage).
    """
    if sensor_reading is None or server_reading is None:
        return None
    if not (math.isfinite(sensor_reading) and math.isfinite(server_reading)):
        return None
    if sensor_reading <= 0:
        return None
    return abs(server_reading - sensor_reading) / sensor_reading * 100.0


def classify_variance(
    variance_pct: float | None,
    *,
    pre_verify_threshold_pct: float,
    auto_reject_threshold_pct: float,
) -> TelemetryVerdict:
    """Map a variance onto the automated verification outcome.

    Strictly below the pre-verify threshold passes, strictly above the
    auto-reject threshold rejects; the band in between (bounds included)
    is left to a human.
    """
    if variance_pct is None:
        return TelemetryVerdict.NO_DATA
    if variance_pct < pre_verify_threshold_pct:
        return TelemetryVerdict.PRE_VERIFIED
    if variance_pct > auto_reject_threshold_pct:
        return TelemetryVerdict.AUTO_REJECTED
    return TelemetryVerdict.NEEDS_REVIEW


def auto_rejected_reason(variance_pct: float, threshold_pct: float) -> str:
    return f"Auto-rejected: variance {variance_pct:.2f}% > {threshold_pct:g}%"
