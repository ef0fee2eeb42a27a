"""Match spreadsheet rows of device keys against devices and installations.

Input is a table as read from a spreadsheet: a list of rows, each a list
of cells, with a header row first. Keys are read from the first column.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pyfieldinstall._constants import GOOGLE_MAPS_URL
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.enrichment.indices import latest_by_device
from pyfieldinstall.exceptions import ImportRowError
from pyfieldinstall.models._normalize import cell_text
from pyfieldinstall.models.device import Device
from pyfieldinstall.models.installation import Installation
from pyfieldinstall.models.location import Location

_logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 128
UNKNOWN_INSTALLER = "Unknown"

EXPORT_HEADER: tuple[str, ...] = (
    "Device ID",
    "Latitude",
    "Longitude",
    "Installer Name",
    "Google Maps Link",
    "Status",
)


class MatchMode(StrEnum):
    DEVICE_ID = "device_id"
    SERIAL_PREFIX = "serial_prefix"
    AUTO = "auto"


class MatchStatus(StrEnum):
    MATCHED = "matched"
    NOT_FOUND = "not_found"
    ERROR = "error"


def extract_keys(table: Iterable[Sequence[Any]]) -> list[tuple[int, str]]:
    """Read ``(row_number, key)`` pairs from the first column.

    The header row is skipped, as are rows whose first cell is missing or
    blank. Row numbers are 1-based spreadsheet rows, so the first data
    row is row 2.
    """
    keys: list[tuple[int, str]] = []
    for index, row in enumerate(table):
        if index == 0 or not row:
            continue
        key = cell_text(row[0])
        if key:
            keys.append((index + 1, key))
    return keys


def serial_prefix(key: str) -> str:
    """The part of ``key`` before its first ``-``."""
    return key.split("-", 1)[0].strip()


def google_maps_link(latitude: float, longitude: float) -> str:
    return GOOGLE_MAPS_URL.format(lat=latitude, lng=longitude)


def _check_key(row: int, key: str, mode: MatchMode) -> None:
    if len(key) > MAX_KEY_LENGTH:
        raise ImportRowError(f"Row {row}: key is longer than {MAX_KEY_LENGTH} characters", row=row, key=key)
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in key):
        raise ImportRowError(f"Row {row}: key contains control characters", row=row, key=key)
    if mode == MatchMode.SERIAL_PREFIX or (mode == MatchMode.AUTO and "-" in key):
        if not serial_prefix(key):
            raise ImportRowError(f"Row {row}: serial key {key!r} has an empty prefix", row=row, key=key)


@dataclass(frozen=True, slots=True)
class BulkMatchResult:
    row: int
    key: str
    status: MatchStatus
    device: Device | None = None
    installation: Installation | None = None
    latitude: float | None = None
    longitude: float | None = None
    installer_name: str = ""
    error: str | None = None

    @property
    def device_id(self) -> str:
        if self.device is not None:
            return self.device.id
        if self.installation is not None:
            return self.installation.device_id
        return self.key

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def maps_url(self) -> str:
        if self.latitude is None or self.longitude is None:
            return ""
        return google_maps_link(self.latitude, self.longitude)

    def to_row(self) -> list[str]:
        return [
            self.device_id,
            "" if self.latitude is None else str(self.latitude),
            "" if self.longitude is None else str(self.longitude),
            self.installer_name,
            self.maps_url,
            self.status.value,
        ]


@dataclass(frozen=True)
class BulkMatchReport:
    results: tuple[BulkMatchResult, ...] = ()
    errors: tuple[str, ...] = ()
    """Row diagnostics, capped; see ``truncated_errors``."""
    truncated_errors: int = 0

    @property
    def matched(self) -> int:
        return sum(1 for r in self.results if r.status == MatchStatus.MATCHED)

    @property
    def not_found(self) -> int:
        return sum(1 for r in self.results if r.status == MatchStatus.NOT_FOUND)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == MatchStatus.ERROR)

    @property
    def without_coordinates(self) -> int:
        return sum(1 for r in self.results if r.status == MatchStatus.MATCHED and not r.has_coordinates)

    def to_table(self, *, include_header: bool = True) -> list[list[str]]:
        """Export rows for a spreadsheet."""
        rows = [r.to_row() for r in self.results]
        if include_header:
            rows.insert(0, list(EXPORT_HEADER))
        return rows


def resolve_error_log_cap(error_log_cap: int | None, config: FieldInstallConfig | None) -> int:
    if error_log_cap is not None:
        return error_log_cap
    return (config or FieldInstallConfig()).error_log_cap


@dataclass
class CappedErrorLog:
    cap: int
    messages: list[str] = field(default_factory=list)
    dropped: int = 0

    def add(self, message: str) -> None:
        if len(self.messages) < self.cap:
            self.messages.append(message)
        else:
            self.dropped += 1


class BulkMatcher:
    """Resolves keys against in-memory indices built once per batch."""

    def __init__(
        self,
        devices: Iterable[Device],
        installations: Iterable[Installation],
        locations: Iterable[Location] = (),
        *,
        error_log_cap: int | None = None,
        config: FieldInstallConfig | None = None,
    ) -> None:
        self._devices = {d.id: d for d in devices}
        self._by_serial: dict[str, Device] = {}
        for device in sorted(self._devices.values(), key=lambda d: d.id):
            if device.device_serial_id:
                self._by_serial.setdefault(device.device_serial_id, device)
        self._installations = latest_by_device(installations)
        self._locations: dict[str, Location] = {}
        for location in locations:
            existing = self._locations.get(location.location_id)
            if existing is None or location.id < existing.id:
                self._locations[location.location_id] = location
        self._error_log_cap = resolve_error_log_cap(error_log_cap, config)

    def _direct(self, key: str) -> tuple[Device | None, Installation | None] | None:
        device = self._devices.get(key)
        installation = self._installations.get(key)
        if device is None and installation is None:
            return None
        return device, installation

    def _by_prefix(self, key: str) -> tuple[Device | None, Installation | None] | None:
        device = self._by_serial.get(serial_prefix(key))
        if device is None:
            return None
        return device, self._installations.get(device.id)

    def _resolve(self, key: str, mode: MatchMode) -> tuple[Device | None, Installation | None] | None:
        if mode == MatchMode.DEVICE_ID:
            return self._direct(key)
        if mode == MatchMode.SERIAL_PREFIX:
            return self._by_prefix(key)
        found = self._direct(key)
        if found is None and "-" in key:
            found = self._by_prefix(key)
        return found

    def _coordinates(self, installation: Installation | None) -> tuple[float, float] | None:
        if installation is None:
            return None
        if installation.location_id:
            location = self._locations.get(installation.location_id)
            if location is not None and location.coordinates is not None:
                return location.coordinates
        return installation.coordinates

    def match_key(self, row: int, key: str, mode: MatchMode = MatchMode.AUTO) -> BulkMatchResult:
        """Resolve one key. Malformed keys raise :class:`ImportRowError`."""
        _check_key(row, key, mode)
        found = self._resolve(key, mode)
        if found is None:
            return BulkMatchResult(row=row, key=key, status=MatchStatus.NOT_FOUND)
        device, installation = found
        coordinates = self._coordinates(installation)
        installer = (installation.installed_by_name if installation else "") or UNKNOWN_INSTALLER
        return BulkMatchResult(
            row=row,
            key=key,
            status=MatchStatus.MATCHED,
            device=device,
            installation=installation,
            latitude=coordinates[0] if coordinates else None,
            longitude=coordinates[1] if coordinates else None,
            installer_name=installer,
        )

    def match(self, table: Iterable[Sequence[Any]], mode: MatchMode = MatchMode.AUTO) -> BulkMatchReport:
        """Match every data row of ``table``; never aborts on a bad row."""
        results: list[BulkMatchResult] = []
        log = CappedErrorLog(cap=self._error_log_cap)
        for row, key in extract_keys(table):
            try:
                results.append(self.match_key(row, key, mode))
            except ImportRowError as exc:
                log.add(str(exc))
                results.append(BulkMatchResult(row=row, key=key, status=MatchStatus.ERROR, error=str(exc)))
        report = BulkMatchReport(results=tuple(results), errors=tuple(log.messages), truncated_errors=log.dropped)
        _logger.debug(
            "Bulk match: %d row(s), %d matched, %d not found, %d failed",
            len(results),
            report.matched,
            report.not_found,
            report.failed,
        )
        return report
