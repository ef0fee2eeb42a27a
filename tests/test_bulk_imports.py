from __future__ import annotations

import pytest

from pyfieldinstall.bulk import import_box_numbers, import_devices, parse_manufacturing_row
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import FieldInstallError, ImportRowError
from pyfieldinstall.models import DeviceStatus
from pyfieldinstall.store import EntityStores, InMemoryDocumentStore

HEADER = [
    "PRODUCT COUNT",
    "TIMESTAMP",
    "PRODUCT ID",
    "DEVICE SERIAL ID",
    "DEVICE UID",
    "DEVICE IMEI",
    "ICCID",
    "ORIGINAL BOX CODE",
]


def _row(uid: str, serial: str = "SN1", box: str = "BX-1") -> list[object]:
    return [1.0, "2025-01-01 10:00", "P-100", serial, uid, 356938035643809.0, "8996601", box]


class TestParseManufacturingRow:
    def test_full_layout(self) -> None:
        row = parse_manufacturing_row(2, _row("UID-1"))

        assert row.device_uid == "UID-1"
        assert row.product_id == "P-100"
        assert row.device_imei == "356938035643809"
        assert row.product_count == "1"
        assert row.box_code == "BX-1"

    @pytest.mark.parametrize(
        ("cells", "message"),
        [
            (["P", "SN", "UID"], "Row 5: Incomplete data (expected at least 5 columns, got 3)"),
            (["P", "SN", "", "IMEI", "ICCID"], "Row 5: DEVICE UID and PRODUCT ID are required"),
            (["P", "SN", "UID", "IMEI", "ICCID"], "Row 5: ORIGINAL BOX CODE is required in the import file"),
            (["1", "ts", "P", "SN", "UID", "IMEI", "ICCID"], "Row 5: ORIGINAL BOX CODE is required in the import file"),
            (["1", "ts", "", "SN", "UID", "IMEI", "ICCID", "BX"], "Row 5: DEVICE UID and PRODUCT ID are required"),
        ],
    )
    def test_rejections(self, cells: list[str], message: str) -> None:
        with pytest.raises(ImportRowError) as excinfo:
            parse_manufacturing_row(5, cells)
        assert str(excinfo.value) == message


class TestImportDevices:
    @pytest.mark.asyncio
    async def test_imports_valid_rows_and_reports_bad_ones(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        table = [HEADER, _row("UID-1"), [], _row("UID-2", box=""), ["", None, "  "], _row("UID-3", serial="SN3")]

        report = await import_devices(stores.devices, table)

        assert (report.success, report.failed, report.total) == (2, 1, 3)
        assert report.errors == ("Row 4: ORIGINAL BOX CODE is required in the import file",)
        device = await stores.devices.get_by_id("UID-3")
        assert device.device_serial_id == "SN3"
        assert device.box_code == "BX-1"
        assert device.status == DeviceStatus.PENDING
        assert await store.get("devices", "UID-2") is None

    @pytest.mark.asyncio
    async def test_store_failure_is_recorded_per_row(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        store.fail_next_write("devices", FieldInstallError("write rejected"))

        report = await import_devices(stores.devices, [HEADER, _row("UID-1"), _row("UID-2")])

        assert (report.success, report.failed) == (1, 1)
        assert report.errors == ("Row 2: write rejected",)

    @pytest.mark.asyncio
    async def test_error_log_cap(self, stores: EntityStores) -> None:
        table = [HEADER, *(["x"] for _ in range(30))]

        report = await import_devices(stores.devices, table)

        assert report.failed == 30
        assert len(report.errors) == 20
        assert report.truncated_errors == 10

    @pytest.mark.asyncio
    async def test_error_log_cap_from_config(self, stores: EntityStores) -> None:
        table = [HEADER, *(["x"] for _ in range(6))]

        report = await import_devices(stores.devices, table, config=FieldInstallConfig(error_log_cap=4))

        assert (len(report.errors), report.truncated_errors) == (4, 2)


class TestImportBoxNumbers:
    @pytest.mark.asyncio
    async def test_updates_every_device_with_serial(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        await store.set("devices", "A", {"deviceSerialId": "SN1"})
        await store.set("devices", "B", {"deviceSerialId": "SN1"})
        await store.set("devices", "C", {"deviceSerialId": "SN2"})
        table = [["SERIAL", "BOX"], ["SN1", 7.0], ["SN9", "3"], ["SN2", ""], ["SN2", "4"]]

        report = await import_box_numbers(stores.devices, table)

        assert (report.success, report.not_found, report.failed) == (2, 1, 1)
        assert report.errors == (
            "Row 3: no device with serial id 'SN9'",
            "Row 4: device serial id and box number are required",
        )
        boxes = {d.id: d.box_number for d in await stores.devices.snapshot()}
        assert boxes == {"A": "7", "B": "7", "C": "4"}
