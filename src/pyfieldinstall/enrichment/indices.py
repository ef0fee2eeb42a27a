"""Index construction for client-side hash joins."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from pyfieldinstall.enrichment.views import JoinIndices
from pyfieldinstall.models.device import Device
from pyfieldinstall.models.installation import Installation
from pyfieldinstall.models.location import Location
from pyfieldinstall.models.team import Team

_EPOCH = datetime.min.replace(tzinfo=UTC)


def recency_key(installation: Installation) -> tuple[datetime, str]:
    """Sort key: creation time, then document id.

    Records without a creation time sort first.
    """
    return (installation.created_at or _EPOCH, installation.id)


def latest_by_device(installations: Iterable[Installation]) -> dict[str, Installation]:
    """Pick the active installation per device.

    The latest ``created_at`` wins; ties go to the larger document id so
    the choice does not depend on snapshot order.
    """
    latest: dict[str, Installation] = {}
    for installation in installations:
        current = latest.get(installation.device_id)
        if current is None or recency_key(installation) > recency_key(current):
            latest[installation.device_id] = installation
    return latest


def build_indices(
    devices: Iterable[Device],
    locations: Iterable[Location],
    teams: Iterable[Team],
    installations: Iterable[Installation],
) -> JoinIndices:
    """Build every join index in one pass per collection.

    When two locations share a ``location_id`` the smaller document id is
    kept.
    """
    location_index: dict[str, Location] = {}
    for location in locations:
        existing = location_index.get(location.location_id)
        if existing is None or location.id < existing.id:
            location_index[location.location_id] = location

    return JoinIndices(
        devices={device.id: device for device in devices},
        locations=location_index,
        teams={team.id: team for team in teams},
        latest_installation=latest_by_device(installations),
    )
