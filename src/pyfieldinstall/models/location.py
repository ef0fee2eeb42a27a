"""Surveyed location model."""

from __future__ import annotations

from typing import Any

from pydantic import field_validator

from pyfieldinstall.models._base import FieldBaseModel
from pyfieldinstall.models._normalize import safe_float


class Location(FieldBaseModel):
    """A geocoded site, joined to installations by ``location_id``.

    ``id`` is the store document id and is *not* the join key.
    """

    id: str
    location_id: str
    latitude: float | None = None
    longitude: float | None = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)
