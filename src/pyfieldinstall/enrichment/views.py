"""Immutable read models produced by the join engine."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from pyfieldinstall._constants import UNASSIGNED_TEAM, UNASSIGNED_TEAM_NAME
from pyfieldinstall.lifecycle.variance import TelemetryVerdict
from pyfieldinstall.models.device import Device
from pyfieldinstall.models.installation import Installation, InstallationStatus
from pyfieldinstall.models.location import Location
from pyfieldinstall.models.team import Team


def _frozen_map(data: Mapping) -> Mapping:
    return MappingProxyType(dict(data))


@dataclass(frozen=True, slots=True)
class JoinIndices:
    """Hash indices over the four collection snapshots."""

    devices: Mapping[str, Device] = field(default_factory=dict)
    locations: Mapping[str, Location] = field(default_factory=dict)
    """Keyed on ``Location.location_id``, not on the document id."""
    teams: Mapping[str, Team] = field(default_factory=dict)
    latest_installation: Mapping[str, Installation] = field(default_factory=dict)
    """The active installation per ``device_id``."""

    def __post_init__(self) -> None:
        for name in ("devices", "locations", "teams", "latest_installation"):
            object.__setattr__(self, name, _frozen_map(getattr(self, name)))

    def team_name(self, team_id: str | None) -> str:
        if not team_id:
            return UNASSIGNED_TEAM_NAME
        team = self.teams.get(team_id)
        return team.display_name if team is not None else team_id


@dataclass(frozen=True, slots=True)
class EnrichedInstallation:
    installation: Installation
    device: Device | None = None
    location: Location | None = None
    team: Team | None = None

    @property
    def id(self) -> str:
        return self.installation.id

    @property
    def coordinates(self) -> tuple[float, float] | None:
        """Surveyed location coordinates first, else the installer's own."""
        if self.location is not None and self.location.coordinates is not None:
            return self.location.coordinates
        return self.installation.coordinates

    @property
    def team_name(self) -> str:
        if self.team is not None:
            return self.team.display_name
        return self.installation.team_id or UNASSIGNED_TEAM_NAME


@dataclass(frozen=True, slots=True)
class BoxGroup:
    team_id: str
    box_number: str
    team_name: str
    devices: tuple[Device, ...]
    installed_count: int
    pending_count: int

    @property
    def key(self) -> str:
        return f"{self.team_id}__{self.box_number}"

    @property
    def device_count(self) -> int:
        return len(self.devices)

    @property
    def opened(self) -> bool:
        return any(d.box_opened for d in self.devices)


@dataclass(frozen=True, slots=True)
class TeamRollupEntry:
    team_id: str
    team_name: str
    count: int


@dataclass(frozen=True, slots=True)
class TeamRollup:
    """Installation counts per team id.

    Installations without a team are counted under ``UNASSIGNED_TEAM``.
    """

    counts: Mapping[str, int] = field(default_factory=dict)
    names: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", _frozen_map(self.counts))
        object.__setattr__(self, "names", _frozen_map(self.names))

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def entries(self) -> tuple[TeamRollupEntry, ...]:
        rows = [
            TeamRollupEntry(team_id, self.names.get(team_id, team_id), count)
            for team_id, count in self.counts.items()
        ]
        rows.sort(key=lambda e: (-e.count, e.team_name.casefold(), e.team_id))
        return tuple(rows)

    def top(self, n: int = 10) -> tuple[TeamRollupEntry, ...]:
        return self.entries()[: max(n, 0)]

    @property
    def unassigned(self) -> int:
        return self.counts.get(UNASSIGNED_TEAM, 0)


STATUS_COLORS: Mapping[InstallationStatus, str] = MappingProxyType(
    {
        InstallationStatus.PENDING: "#f59e0b",
        InstallationStatus.VERIFIED: "#10b981",
        InstallationStatus.FLAGGED: "#ef4444",
    }
)
DEFAULT_MARKER_COLOR = "#6b7280"


@dataclass(frozen=True, slots=True)
class MapMarker:
    installation_id: str
    device_id: str
    location_id: str | None
    latitude: float
    longitude: float
    status: InstallationStatus
    installer_name: str
    from_location: bool
    """``True`` when the coordinates came from the surveyed location."""

    @property
    def color(self) -> str:
        return STATUS_COLORS.get(self.status, DEFAULT_MARKER_COLOR)

    def matches(self, term: str) -> bool:
        needle = term.strip().casefold()
        if not needle:
            return True
        haystack = (self.device_id, self.location_id or "", self.installer_name)
        return any(needle in value.casefold() for value in haystack)


@dataclass(frozen=True, slots=True)
class MapMarkerSet:
    markers: tuple[MapMarker, ...] = ()
    omitted: int = 0
    """Installations left off the map for lack of coordinates."""

    def __iter__(self) -> Iterator[MapMarker]:
        return iter(self.markers)

    def __len__(self) -> int:
        return len(self.markers)

    def search(self, term: str) -> MapMarkerSet:
        return MapMarkerSet(tuple(m for m in self.markers if m.matches(term)), self.omitted)

    @property
    def bounds(self) -> tuple[tuple[float, float], tuple[float, float]] | None:
        """``((min_lat, min_lng), (max_lat, max_lng))`` or ``None`` when empty."""
        if not self.markers:
            return None
        lats = [m.latitude for m in self.markers]
        lngs = [m.longitude for m in self.markers]
        return (min(lats), min(lngs)), (max(lats), max(lngs))


@dataclass(frozen=True, slots=True)
class InstallationStats:
    total: int = 0
    pending: int = 0
    verified: int = 0
    flagged: int = 0
    with_server_data: int = 0

    @property
    def verification_rate(self) -> float:
        return self.verified / self.total * 100.0 if self.total else 0.0


@dataclass(frozen=True, slots=True)
class VerificationItem:
    enriched: EnrichedInstallation
    variance_pct: float | None = None
    verdict: TelemetryVerdict = TelemetryVerdict.NO_DATA

    @property
    def installation(self) -> Installation:
        return self.enriched.installation

    @property
    def auto_flagged(self) -> bool:
        return self.enriched.installation.is_auto_flagged


@dataclass(frozen=True, slots=True)
class OpenBoxSummary:
    team_id: str
    opened: tuple[str, ...] = ()
    not_opened: tuple[str, ...] = ()

    @property
    def opened_count(self) -> int:
        return len(self.opened)

    @property
    def not_opened_count(self) -> int:
        return len(self.not_opened)
