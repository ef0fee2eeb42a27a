"""Shipping-box handling: team assignment, opening, installer assignment."""

from __future__ import annotations

import logging

from pyfieldinstall.models.device import Device
from pyfieldinstall.store.adapters import DeviceStore

_logger = logging.getLogger(__name__)


class BoxManager:
    def __init__(self, devices: DeviceStore) -> None:
        self._devices = devices

    async def assign_box_to_team(
        self,
        box_code: str,
        team_id: str,
        box_number: str,
        count: int | None = None,
    ) -> list[Device]:
        """Hand devices from an original manufacturer box to a team.

        Only devices not yet assigned to any team are taken, lowest id
        first. Returns the devices that were assigned.
        """
        box_code = box_code.strip()
        box_number = box_number.strip()
        if not box_code or not team_id or not box_number:
            raise ValueError("box_code, team_id and box_number are required")
        if count is not None and count <= 0:
            raise ValueError("count must be positive")

        candidates = await self._devices.query_by_equality("box_code", box_code)
        free = sorted((d for d in candidates if not d.team_id), key=lambda d: d.id)
        if count is not None:
            free = free[:count]

        for device in free:
            await self._devices.update_fields(device.id, team_id=team_id, box_number=box_number, box_opened=False)
        _logger.debug(
            "Assigned %d device(s) from box %s to team %s as box %s", len(free), box_code, team_id, box_number
        )
        return [device.model_copy(update={"team_id": team_id, "box_number": box_number}) for device in free]

    async def unassign_box(self, team_id: str, box_number: str) -> int:
        """Return a team's box to the unassigned pool.

        Clears team, box number, opened flag and installer assignment on
        every device in the box; returns how many were released.
        """
        devices = await self._devices.query_by_equality("team_id", team_id)
        released = 0
        for device in devices:
            if device.box_number != box_number:
                continue
            await self._devices.update_fields(
                device.id,
                team_id=None,
                box_number=None,
                box_opened=None,
                assigned_installer_id=None,
                assigned_installer_name=None,
            )
            released += 1
        _logger.debug("Released box %s from team %s (%d device(s))", box_number, team_id, released)
        return released

    async def open_box(self, team_id: str, box_number: str) -> int:
        """Mark every unopened device in a team's box as opened; returns how many changed."""
        devices = await self._devices.query_by_equality("team_id", team_id)
        opened = 0
        for device in devices:
            if device.box_number == box_number and not device.box_opened:
                await self._devices.update_fields(device.id, box_opened=True)
                opened += 1
        _logger.debug("Opened box %s for team %s (%d device(s))", box_number, team_id, opened)
        return opened

    async def assign_installer(
        self,
        device_id: str,
        installer_id: str | None,
        installer_name: str | None = None,
    ) -> None:
        """Assign a device to an installer, or clear the assignment with ``None``."""
        await self._devices.get_by_id(device_id)
        if installer_id is None:
            installer_name = None
        await self._devices.update_fields(
            device_id,
            assigned_installer_id=installer_id,
            assigned_installer_name=installer_name,
        )
