"""Data models for store documents."""

from pyfieldinstall.models._base import FieldBaseModel, FieldEnum, StoreTimestamp
from pyfieldinstall.models._normalize import parse_timestamp
from pyfieldinstall.models.device import Device, DeviceStatus
from pyfieldinstall.models.installation import Installation, InstallationStatus
from pyfieldinstall.models.location import Location
from pyfieldinstall.models.team import HeightUnit, MembershipRole, Team, TeamMember, TeamMembership
from pyfieldinstall.models.telemetry import ServerData

__all__ = [
    "Device",
    "DeviceStatus",
    "FieldBaseModel",
    "FieldEnum",
    "HeightUnit",
    "Installation",
    "InstallationStatus",
    "Location",
    "MembershipRole",
    "ServerData",
    "StoreTimestamp",
    "Team",
    "TeamMember",
    "TeamMembership",
    "parse_timestamp",
]
