"""Installation record model."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator, model_validator

from pyfieldinstall._constants import AUTO_REJECTED_REASON_PREFIX
from pyfieldinstall.models._base import FieldBaseModel, FieldEnum, StoreTimestamp
from pyfieldinstall.models._normalize import safe_float


class InstallationStatus(FieldEnum):
    """Verification state of an installation.

    ``pending`` is initial, ``verified`` is terminal and ``flagged`` may
    still move to ``verified``.
    """

    UNKNOWN = "unknown"
    PENDING = "pending"
    VERIFIED = "verified"
    FLAGGED = "flagged"


class Installation(FieldBaseModel):
    """A device physically placed and read by an installer.

    ``installed_by_name`` and ``team_id`` are denormalized at submit
    time so list views need no join.

    Invariant: ``flagged_reason`` is non-empty if and only if ``status``
    is ``flagged``. A flagged document without a reason is rejected; a
    reason left on a non-flagged document is dropped.
    """

    id: str
    device_id: str
    location_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    sensor_reading: float | None = None
    status: InstallationStatus = InstallationStatus.PENDING
    system_pre_verified: bool = False
    system_pre_verified_at: StoreTimestamp = None
    flagged_reason: str | None = None
    installed_by: str = ""
    installed_by_name: str = ""
    team_id: str | None = None
    verified_by: str | None = None
    verified_at: StoreTimestamp = None
    created_at: StoreTimestamp = None
    updated_at: StoreTimestamp = None
    image_urls: tuple[str, ...] = Field(default=(), max_length=4)
    video_url: str | None = None
    latest_dis_cm: float | None = None

    @field_validator("latitude", "longitude", "sensor_reading", "latest_dis_cm", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("flagged_reason", mode="before")
    @classmethod
    def _strip_reason(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @model_validator(mode="after")
    def _check_flagged_reason(self) -> Installation:
        if self.status == InstallationStatus.FLAGGED:
            if not self.flagged_reason:
                raise ValueError("flagged installation requires a flagged_reason")
        elif self.flagged_reason is not None:
            object.__setattr__(self, "flagged_reason", None)
        return self

    @property
    def coordinates(self) -> tuple[float, float] | None:
        """Installer-entered coordinates, if both are present."""
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def is_auto_flagged(self) -> bool:
        """Whether the flag was raised by the automated telemetry check."""
        if self.status != InstallationStatus.FLAGGED:
            return False
        if self.verified_by and self.verified_by.startswith("System"):
            return True
        reason = (self.flagged_reason or "").lower()
        return AUTO_REJECTED_REASON_PREFIX.lower() in reason
