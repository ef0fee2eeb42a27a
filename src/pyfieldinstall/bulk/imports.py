"""Spreadsheet imports into the devices collection.

Rows are processed independently: a bad row is recorded in the report
and the import moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pyfieldinstall.bulk.matching import CappedErrorLog, resolve_error_log_cap
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import FieldInstallError, ImportRowError
from pyfieldinstall.models._normalize import cell_text
from pyfieldinstall.models.device import DeviceStatus
from pyfieldinstall.store.adapters import DeviceStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportReport:
    success: int = 0
    failed: int = 0
    not_found: int = 0
    errors: tuple[str, ...] = ()
    truncated_errors: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failed + self.not_found


@dataclass(frozen=True)
class ManufacturingRow:
    """One row of the manufacturing sheet."""

    row: int
    device_uid: str
    product_id: str
    device_serial_id: str = ""
    device_imei: str = ""
    iccid: str = ""
    timestamp: str = ""
    product_count: str = ""
    box_code: str = ""


def parse_manufacturing_row(row_number: int, cells: Sequence[Any]) -> ManufacturingRow:
    """Interpret one data row of the manufacturing sheet.

    Supported layouts, by column count:

    * 8+: product count, timestamp, product id, serial id, uid, IMEI,
      ICCID, original box code
    * 7: the same without the box code
    * 5-6: product id, serial id, uid, IMEI, ICCID

    Raises
    ------
    ImportRowError
        Too few columns, or a required value is missing. The original
        box code is required, so only the 8-column layout can succeed.
    """
    values = [cell_text(c) for c in cells]
    product_count = timestamp = box_code = ""
    if len(values) >= 8:
        product_count, timestamp, product_id, serial_id, uid, imei, iccid, box_code = values[:8]
    elif len(values) >= 7:
        product_count, timestamp, product_id, serial_id, uid, imei, iccid = values[:7]
    elif len(values) >= 5:
        product_id, serial_id, uid, imei, iccid = values[:5]
    else:
        raise ImportRowError(
            f"Row {row_number}: Incomplete data (expected at least 5 columns, got {len(values)})",
            row=row_number,
        )

    if not uid or not product_id:
        raise ImportRowError(f"Row {row_number}: DEVICE UID and PRODUCT ID are required", row=row_number, key=uid)
    if not box_code:
        raise ImportRowError(
            f"Row {row_number}: ORIGINAL BOX CODE is required in the import file", row=row_number, key=uid
        )
    return ManufacturingRow(
        row=row_number,
        device_uid=uid,
        product_id=product_id,
        device_serial_id=serial_id,
        device_imei=imei,
        iccid=iccid,
        timestamp=timestamp,
        product_count=product_count,
        box_code=box_code,
    )


def _data_rows(table: Iterable[Sequence[Any]]) -> Iterable[tuple[int, Sequence[Any]]]:
    for index, row in enumerate(table):
        if index == 0:
            continue
        if not row or not any(cell_text(c) for c in row):
            continue
        yield index + 1, row


async def import_devices(
    devices: DeviceStore,
    table: Iterable[Sequence[Any]],
    *,
    error_log_cap: int | None = None,
    config: FieldInstallConfig | None = None,
) -> ImportReport:
    """Upsert devices from a manufacturing sheet (header row first).

    Each device is written with status ``pending`` under its uid.
    """
    success = failed = 0
    log = CappedErrorLog(cap=resolve_error_log_cap(error_log_cap, config))
    store = devices.store
    for row_number, cells in _data_rows(table):
        try:
            row = parse_manufacturing_row(row_number, cells)
            now = datetime.now(UTC)
            await store.set(
                devices.path,
                row.device_uid,
                {
                    "productId": row.product_id,
                    "deviceSerialId": row.device_serial_id,
                    "deviceImei": row.device_imei,
                    "iccid": row.iccid,
                    "timestamp": row.timestamp,
                    "boxCode": row.box_code,
                    "status": DeviceStatus.PENDING.value,
                    "createdAt": now,
                    "updatedAt": now,
                },
            )
        except ImportRowError as exc:
            failed += 1
            log.add(str(exc))
        except FieldInstallError as exc:
            failed += 1
            log.add(f"Row {row_number}: {exc}")
        else:
            success += 1

    _logger.info("Device import finished: %d imported, %d failed", success, failed)
    return ImportReport(success=success, failed=failed, errors=tuple(log.messages), truncated_errors=log.dropped)


async def import_box_numbers(
    devices: DeviceStore,
    table: Iterable[Sequence[Any]],
    *,
    error_log_cap: int | None = None,
    config: FieldInstallConfig | None = None,
) -> ImportReport:
    """Attach box numbers from ``(device serial id, box number)`` rows.

    Every device sharing the serial id is updated. Unknown serials are
    counted in ``not_found``.
    """
    success = failed = not_found = 0
    log = CappedErrorLog(cap=resolve_error_log_cap(error_log_cap, config))
    for row_number, cells in _data_rows(table):
        serial = cell_text(cells[0]) if len(cells) > 0 else ""
        box_number = cell_text(cells[1]) if len(cells) > 1 else ""
        if not serial or not box_number:
            failed += 1
            log.add(f"Row {row_number}: device serial id and box number are required")
            continue
        try:
            matches = await devices.query_by_equality("device_serial_id", serial)
            if not matches:
                not_found += 1
                log.add(f"Row {row_number}: no device with serial id {serial!r}")
                continue
            for device in matches:
                await devices.update_fields(device.id, box_number=box_number)
        except FieldInstallError as exc:
            failed += 1
            log.add(f"Row {row_number}: {exc}")
        else:
            success += 1

    _logger.info(
        "Box import finished: %d updated, %d not found, %d failed", success, not_found, failed
    )
    return ImportReport(
        success=success,
        failed=failed,
        not_found=not_found,
        errors=tuple(log.messages),
        truncated_errors=log.dropped,
    )
