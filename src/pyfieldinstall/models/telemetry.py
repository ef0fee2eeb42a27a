"""Server-side telemetry model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pyfieldinstall.models._base import StoreTimestamp
from pyfieldinstall.models._normalize import safe_float, safe_str


class ServerData(BaseModel):
    """Latest sensor value reported by a device to the telemetry backend.

    Parameters
    ----------
    device_id : str
        Device the reading belongs to. For readings fetched over HTTP this
        is the full device id the caller asked for.
    sensor_data : float or None
        Measured distance in centimetres (``dis_cm``); ``None`` when the
        backend has not ingested a usable value yet.
    observed_at : datetime or None
        Timestamp of the reading, if reported.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    device_id: str = Field(validation_alias=AliasChoices("deviceId", "device_id", "id"))
    sensor_data: float | None = Field(
        default=None,
        validation_alias=AliasChoices("sensorData", "sensor_data", "dis_cm", "disCm", "latestDisCm"),
    )
    observed_at: StoreTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("observedAt", "observed_at", "timestamp", "time", "created_at"),
    )

    @field_validator("device_id", mode="before")
    @classmethod
    def _coerce_device_id(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("device_id must be non-empty")
        return text

    @field_validator("sensor_data", mode="before")
    @classmethod
    def _coerce_sensor(cls, value: Any) -> float | None:
        return safe_float(value)

    @property
    def has_reading(self) -> bool:
        """A reading of ``None`` or ``<= 0`` means "no server data yet"."""
        return self.sensor_data is not None and self.sensor_data > 0
