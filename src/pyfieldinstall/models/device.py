"""Device model."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from pyfieldinstall.models._base import FieldBaseModel, FieldEnum, StoreTimestamp


class DeviceStatus(FieldEnum):
    """Device lifecycle status, mirrored from its installation."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    INSTALLED = "installed"
    VERIFIED = "verified"
    FLAGGED = "flagged"


class Device(FieldBaseModel):
    """A manufactured sensor unit.

    Created by the manufacturing import keyed on the device uid. The
    ``box_number`` is attached later by a box import keyed on
    ``device_serial_id``.
    """

    id: str
    """Device unique id (document id)."""
    product_id: str = ""
    device_serial_id: str = ""
    device_imei: str = ""
    iccid: str = ""
    box_code: str | None = None
    """Original box code from the manufacturing sheet."""
    box_number: str | None = None
    """Box number assigned to a team after manufacture."""
    status: DeviceStatus = DeviceStatus.PENDING
    team_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("teamId", "assignedTeamId", "team_id"),
    )
    box_opened: bool = False
    assigned_installer_id: str | None = None
    assigned_installer_name: str | None = None
    created_at: StoreTimestamp = None
    updated_at: StoreTimestamp = None

    @property
    def in_box(self) -> bool:
        """Whether the device is assigned to both a team and a box."""
        return bool(self.team_id) and bool(self.box_number)
