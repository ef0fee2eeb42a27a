"""Pure join and aggregation functions over collection snapshots.

Nothing here touches the store. A missing join partner is a normal
condition (records arrive from independent feeds in any order) and
yields ``None`` rather than an error.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable

from pyfieldinstall._constants import UNASSIGNED_TEAM, UNASSIGNED_TEAM_NAME
from pyfieldinstall.enrichment.indices import recency_key
from pyfieldinstall.enrichment.views import (
    BoxGroup,
    EnrichedInstallation,
    InstallationStats,
    JoinIndices,
    MapMarker,
    MapMarkerSet,
    OpenBoxSummary,
    TeamRollup,
    VerificationItem,
)
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.lifecycle.variance import classify_variance, percentage_difference
from pyfieldinstall.models.device import Device
from pyfieldinstall.models.installation import Installation, InstallationStatus


def enrich(installations: Iterable[Installation], indices: JoinIndices) -> tuple[EnrichedInstallation, ...]:
    """Attach device, location and team to each installation.

    Output is ordered by ``(created_at, id)`` so the same snapshots always
    produce the same sequence.
    """
    enriched = [
        EnrichedInstallation(
            installation=installation,
            device=indices.devices.get(installation.device_id),
            location=indices.locations.get(installation.location_id) if installation.location_id else None,
            team=indices.teams.get(installation.team_id) if installation.team_id else None,
        )
        for installation in sorted(installations, key=recency_key)
    ]
    return tuple(enriched)


def box_groups(
    devices: Iterable[Device],
    indices: JoinIndices,
    team_filter: str | None = None,
) -> tuple[BoxGroup, ...]:
    """Group boxed devices by ``(team_id, box_number)``.

    A device counts as installed when any installation references it.
    """
    grouped: dict[tuple[str, str], list[Device]] = defaultdict(list)
    for device in devices:
        if not device.team_id or not device.box_number:
            continue
        if team_filter is not None and device.team_id != team_filter:
            continue
        grouped[(device.team_id, device.box_number)].append(device)

    groups: list[BoxGroup] = []
    for (team_id, box_number), members in grouped.items():
        members.sort(key=lambda d: d.id)
        installed = sum(1 for d in members if d.id in indices.latest_installation)
        groups.append(
            BoxGroup(
                team_id=team_id,
                box_number=box_number,
                team_name=indices.team_name(team_id),
                devices=tuple(members),
                installed_count=installed,
                pending_count=len(members) - installed,
            )
        )
    groups.sort(key=lambda g: (g.box_number.casefold(), g.box_number, g.team_id))
    return tuple(groups)


def team_rollup(installations: Iterable[Installation], indices: JoinIndices) -> TeamRollup:
    counts: Counter[str] = Counter(installation.team_id or UNASSIGNED_TEAM for installation in installations)
    names = {
        team_id: UNASSIGNED_TEAM_NAME if team_id == UNASSIGNED_TEAM else indices.team_name(team_id)
        for team_id in counts
    }
    return TeamRollup(counts=dict(counts), names=names)


def map_markers(enriched: Iterable[EnrichedInstallation]) -> MapMarkerSet:
    """Place installations on the map.

    Surveyed location coordinates win over the installer's; installations
    with neither are counted in ``omitted``.
    """
    markers: list[MapMarker] = []
    omitted = 0
    for item in enriched:
        coordinates = item.coordinates
        if coordinates is None:
            omitted += 1
            continue
        installation = item.installation
        markers.append(
            MapMarker(
                installation_id=installation.id,
                device_id=installation.device_id,
                location_id=installation.location_id,
                latitude=coordinates[0],
                longitude=coordinates[1],
                status=installation.status,
                installer_name=installation.installed_by_name,
                from_location=item.location is not None and item.location.coordinates is not None,
            )
        )
    return MapMarkerSet(tuple(markers), omitted)


def installation_stats(installations: Iterable[Installation]) -> InstallationStats:
    total = pending = verified = flagged = with_server_data = 0
    for installation in installations:
        total += 1
        if installation.status == InstallationStatus.PENDING:
            pending += 1
        elif installation.status == InstallationStatus.VERIFIED:
            verified += 1
        elif installation.status == InstallationStatus.FLAGGED:
            flagged += 1
        if installation.latest_dis_cm is not None:
            with_server_data += 1
    return InstallationStats(
        total=total,
        pending=pending,
        verified=verified,
        flagged=flagged,
        with_server_data=with_server_data,
    )


def verification_queue(
    enriched: Iterable[EnrichedInstallation],
    config: FieldInstallConfig | None = None,
) -> tuple[VerificationItem, ...]:
    """Installations a verifier should look at.

    Pending installations plus those the telemetry check rejected, so a
    human can confirm or override the automated flag. Entries whose device
    is not (yet) known are left out. Each item carries the telemetry
    verdict under the thresholds of ``config``.
    """
    config = config or FieldInstallConfig()
    queue: list[VerificationItem] = []
    for item in enriched:
        installation = item.installation
        if item.device is None:
            continue
        if installation.status != InstallationStatus.PENDING and not installation.is_auto_flagged:
            continue
        variance = percentage_difference(installation.sensor_reading, installation.latest_dis_cm)
        verdict = classify_variance(
            variance,
            pre_verify_threshold_pct=config.pre_verify_threshold_pct,
            auto_reject_threshold_pct=config.auto_reject_threshold_pct,
        )
        queue.append(VerificationItem(enriched=item, variance_pct=variance, verdict=verdict))
    return tuple(queue)


def open_box_summary(devices: Iterable[Device], team_id: str) -> OpenBoxSummary:
    """Which of a team's boxes have been opened.

    A box is open once any of its devices is marked opened.
    """
    boxes: dict[str, bool] = {}
    for device in devices:
        if device.team_id != team_id or not device.box_number:
            continue
        boxes[device.box_number] = boxes.get(device.box_number, False) or device.box_opened
    ordered = sorted(boxes, key=lambda b: (b.casefold(), b))
    return OpenBoxSummary(
        team_id=team_id,
        opened=tuple(b for b in ordered if boxes[b]),
        not_opened=tuple(b for b in ordered if not boxes[b]),
    )
