from __future__ import annotations

from typing import Any

import pytest

from pyfieldinstall.bulk import (
    EXPORT_HEADER,
    BulkMatcher,
    MatchMode,
    MatchStatus,
    extract_keys,
    google_maps_link,
    serial_prefix,
)
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import ImportRowError
from pyfieldinstall.models import Device, Installation, Location

DEVICES = [
    Device(id="DEV001"),
    Device(id="DEV002", device_serial_id="SN123"),
    Device(id="DEV003", device_serial_id="SN123"),
    Device(id="DEV004", device_serial_id="SN900"),
]
INSTALLATIONS = [
    Installation(id="i1", device_id="DEV001", latitude=24.5, longitude=46.5, installed_by_name="Ali"),
    Installation(id="i2", device_id="DEV002", location_id="LOC-1", latitude=1.0, longitude=1.0),
    Installation(id="i9", device_id="RETIRED", latitude=20.0, longitude=40.0, installed_by_name="Omar"),
]
LOCATIONS = [Location(id="l1", location_id="LOC-1", latitude=24.71, longitude=46.67)]


def _matcher(**kwargs: Any) -> BulkMatcher:
    return BulkMatcher(DEVICES, INSTALLATIONS, LOCATIONS, **kwargs)


def _table(*keys: object) -> list[list[object]]:
    return [["Device ID"], *([key] for key in keys)]


def test_extract_keys_skips_header_and_blank_rows() -> None:
    table = [["Device ID"], ["DEV001"], [], [None], ["  "], [12345.0], ["  DEV002 "]]

    assert extract_keys(table) == [(2, "DEV001"), (6, "12345"), (7, "DEV002")]


def test_serial_prefix_and_maps_link() -> None:
    assert serial_prefix("SN123-ABCDEF") == "SN123"
    assert serial_prefix("SN123") == "SN123"
    assert google_maps_link(24.5, 46.5) == "https://www.google.com/maps?q=24.5,46.5"


class TestMatchKey:
    def test_direct_device_match_with_installation(self) -> None:
        result = _matcher().match_key(2, "DEV001")

        assert result.status == MatchStatus.MATCHED
        assert result.device_id == "DEV001"
        assert (result.latitude, result.longitude) == (24.5, 46.5)
        assert result.installer_name == "Ali"

    def test_serial_prefix_match_prefers_location_coordinates(self) -> None:
        result = _matcher().match_key(2, "SN123-ABCDEF")

        assert result.status == MatchStatus.MATCHED
        # two devices share SN123; lowest id wins
        assert result.device_id == "DEV002"
        assert (result.latitude, result.longitude) == (24.71, 46.67)
        assert result.installer_name == "Unknown"

    def test_installation_without_device_matches_directly(self) -> None:
        result = _matcher().match_key(2, "RETIRED")

        assert result.status == MatchStatus.MATCHED
        assert result.device is None
        assert result.device_id == "RETIRED"

    def test_device_without_installation_has_no_coordinates(self) -> None:
        result = _matcher().match_key(2, "SN900-X")

        assert result.status == MatchStatus.MATCHED
        assert result.device_id == "DEV004"
        assert not result.has_coordinates
        assert result.maps_url == ""

    def test_unknown_key_not_found(self) -> None:
        result = _matcher().match_key(3, "UNKNOWN-XYZ")

        assert result.status == MatchStatus.NOT_FOUND
        assert result.device_id == "UNKNOWN-XYZ"

    @pytest.mark.parametrize(
        ("key", "mode", "found"),
        [
            ("DEV001", MatchMode.DEVICE_ID, True),
            ("SN123-A", MatchMode.DEVICE_ID, False),
            ("SN123-A", MatchMode.SERIAL_PREFIX, True),
            ("DEV001", MatchMode.SERIAL_PREFIX, False),
        ],
    )
    def test_explicit_modes(self, key: str, mode: MatchMode, found: bool) -> None:
        result = _matcher().match_key(2, key, mode)
        assert (result.status == MatchStatus.MATCHED) is found

    @pytest.mark.parametrize(
        ("key", "message"),
        [("X" * 129, "longer than 128"), ("DEV\x01", "control characters"), ("-ABC", "empty prefix")],
    )
    def test_malformed_keys_raise(self, key: str, message: str) -> None:
        with pytest.raises(ImportRowError, match=message) as excinfo:
            _matcher().match_key(4, key)
        assert excinfo.value.row == 4
        assert str(excinfo.value).startswith("Row 4:")


class TestMatchTable:
    def test_mixed_batch_counts(self) -> None:
        report = _matcher().match(_table("DEV001", "SN123-ABCDEF", "UNKNOWN-XYZ", None, "-bad", "SN900-1"))

        assert [r.row for r in report.results] == [2, 3, 4, 6, 7]
        assert (report.matched, report.not_found, report.failed) == (3, 1, 1)
        assert report.without_coordinates == 1
        assert report.errors == ("Row 6: serial key '-bad' has an empty prefix",)
        assert report.truncated_errors == 0

    def test_error_log_is_capped(self) -> None:
        report = _matcher().match(_table(*(["-x"] * 25)))

        assert report.failed == 25
        assert len(report.errors) == 20
        assert report.truncated_errors == 5

    def test_custom_error_cap(self) -> None:
        report = _matcher(error_log_cap=2).match(_table("-a", "-b", "-c"))
        assert (len(report.errors), report.truncated_errors) == (2, 1)

    def test_error_cap_from_config(self) -> None:
        report = _matcher(config=FieldInstallConfig(error_log_cap=3)).match(_table(*(["-x"] * 5)))
        assert (len(report.errors), report.truncated_errors) == (3, 2)

    def test_several_thousand_mixed_rows(self) -> None:
        keys: list[str] = []
        for i in range(5000):
            kind = i % 4
            if kind == 0:
                keys.append("DEV001")
            elif kind == 1:
                keys.append(f"SN123-ABC{i}")
            elif kind == 2:
                keys.append(f"GHOST{i}")
            else:
                keys.append(f"-bad{i}")

        report = _matcher().match(_table(*keys))

        assert len(report.results) == 5000
        assert (report.matched, report.not_found, report.failed) == (2500, 1250, 1250)
        assert len(report.errors) == 20
        assert report.truncated_errors == 1230
        assert report.errors[0] == "Row 5: serial key '-bad3' has an empty prefix"
        assert report.results[-1].row == 5001

    def test_to_table_export(self) -> None:
        report = _matcher().match(_table("DEV001", "NOPE"))
        table = report.to_table()

        assert table[0] == list(EXPORT_HEADER)
        assert table[1] == [
            "DEV001",
            "24.5",
            "46.5",
            "Ali",
            "https://www.google.com/maps?q=24.5,46.5",
            "matched",
        ]
        assert table[2] == ["NOPE", "", "", "", "", "not_found"]
        assert len(report.to_table(include_header=False)) == 2
