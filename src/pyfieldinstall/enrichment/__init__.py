"""Client-side joins and aggregations."""

from pyfieldinstall.enrichment.engine import (
    box_groups,
    enrich,
    installation_stats,
    map_markers,
    open_box_summary,
    team_rollup,
    verification_queue,
)
from pyfieldinstall.enrichment.indices import build_indices, latest_by_device
from pyfieldinstall.enrichment.views import (
    BoxGroup,
    EnrichedInstallation,
    InstallationStats,
    JoinIndices,
    MapMarker,
    MapMarkerSet,
    OpenBoxSummary,
    TeamRollup,
    TeamRollupEntry,
    VerificationItem,
)

__all__ = [
    "BoxGroup",
    "EnrichedInstallation",
    "InstallationStats",
    "JoinIndices",
    "MapMarker",
    "MapMarkerSet",
    "OpenBoxSummary",
    "TeamRollup",
    "TeamRollupEntry",
    "VerificationItem",
    "box_groups",
    "build_indices",
    "enrich",
    "installation_stats",
    "latest_by_device",
    "map_markers",
    "open_box_summary",
    "team_rollup",
    "verification_queue",
]
