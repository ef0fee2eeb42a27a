"""Bulk spreadsheet lookups and imports."""

from pyfieldinstall.bulk.imports import (
    ImportReport,
    ManufacturingRow,
    import_box_numbers,
    import_devices,
    parse_manufacturing_row,
)
from pyfieldinstall.bulk.matching import (
    EXPORT_HEADER,
    BulkMatcher,
    BulkMatchReport,
    BulkMatchResult,
    MatchMode,
    MatchStatus,
    extract_keys,
    google_maps_link,
    serial_prefix,
)

__all__ = [
    "EXPORT_HEADER",
    "BulkMatchReport",
    "BulkMatchResult",
    "BulkMatcher",
    "ImportReport",
    "ManufacturingRow",
    "MatchMode",
    "MatchStatus",
    "extract_keys",
    "google_maps_link",
    "import_box_numbers",
    "import_devices",
    "parse_manufacturing_row",
    "serial_prefix",
]
