"""Team, team member and membership models."""

from __future__ import annotations

from typing import Any

from pydantic import field_validator

from pyfieldinstall.models._base import FieldBaseModel, FieldEnum, StoreTimestamp
from pyfieldinstall.models._normalize import safe_float


class HeightUnit(FieldEnum):
    UNKNOWN = "unknown"
    CM = "cm"
    FT = "ft"


class MembershipRole(FieldEnum):
    UNKNOWN = "unknown"
    ADMIN = "admin"
    MEMBER = "member"


class Team(FieldBaseModel):
    """An installer team (called an *amanah* in the field)."""

    id: str
    name: str = ""
    owner_id: str = ""
    owner_name: str = ""
    created_at: StoreTimestamp = None
    updated_at: StoreTimestamp = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class TeamMember(FieldBaseModel):
    """A row of the ``teams/{id}/members`` sub-collection."""

    id: str
    email: str = ""
    name: str = ""
    device_id: str | None = None
    height: float | None = None
    height_unit: HeightUnit = HeightUnit.CM
    added_at: StoreTimestamp = None

    @field_validator("height", mode="before")
    @classmethod
    def _coerce_height(cls, value: Any) -> float | None:
        return safe_float(value)


class TeamMembership(FieldBaseModel):
    """A row of the flat ``teamMembers`` table used for access checks."""

    id: str
    team_id: str
    user_id: str = ""
    role: MembershipRole = MembershipRole.MEMBER
    joined_at: StoreTimestamp = None
