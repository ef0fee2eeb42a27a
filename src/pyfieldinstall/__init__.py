"""pyfieldinstall - Async core for tracking IoT sensor installations in the field."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyfieldinstall")
except PackageNotFoundError:
    __version__ = "0+local"

from pyfieldinstall.bulk import BulkMatcher, BulkMatchReport, MatchMode, import_box_numbers, import_devices
from pyfieldinstall.composer import ComposedView, LiveAggregationComposer
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import (
    ConcurrentModification,
    FieldInstallConfigError,
    FieldInstallError,
    ImportRowError,
    InstallationInFlightError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SubscriptionError,
    TelemetryTransportError,
)
from pyfieldinstall.lifecycle import (
    Action,
    AuthContext,
    BoxManager,
    InstallationDraft,
    InstallationStateMachine,
    Role,
    TelemetryOutcome,
    TelemetryVerdict,
    menu_items,
    visible_actions,
)
from pyfieldinstall.models import (
    Device,
    DeviceStatus,
    Installation,
    InstallationStatus,
    Location,
    ServerData,
    Team,
    TeamMember,
    TeamMembership,
)
from pyfieldinstall.store import DocumentStore, EntityStores, InMemoryDocumentStore
from pyfieldinstall.teams import TeamDeletionReport, TeamService
from pyfieldinstall.telemetry import TelemetryClient, TelemetryMqttRuntime, TelemetryVerifier

__all__ = [
    "__version__",
    "Action",
    "AuthContext",
    "BoxManager",
    "BulkMatchReport",
    "BulkMatcher",
    "ComposedView",
    "ConcurrentModification",
    "Device",
    "DeviceStatus",
    "DocumentStore",
    "EntityStores",
    "FieldInstallConfig",
    "FieldInstallConfigError",
    "FieldInstallError",
    "ImportRowError",
    "InMemoryDocumentStore",
    "Installation",
    "InstallationDraft",
    "InstallationInFlightError",
    "InstallationStateMachine",
    "InstallationStatus",
    "InvalidTransitionError",
    "LiveAggregationComposer",
    "Location",
    "MatchMode",
    "NotFoundError",
    "PermissionDeniedError",
    "Role",
    "ServerData",
    "SubscriptionError",
    "Team",
    "TeamDeletionReport",
    "TeamMember",
    "TeamMembership",
    "TeamService",
    "TelemetryClient",
    "TelemetryMqttRuntime",
    "TelemetryOutcome",
    "TelemetryTransportError",
    "TelemetryVerdict",
    "TelemetryVerifier",
    "import_box_numbers",
    "import_devices",
    "menu_items",
    "visible_actions",
]
