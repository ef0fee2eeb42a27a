"""Installation lifecycle: verification state machine, roles and boxes."""

from pyfieldinstall.lifecycle.actions import Action, AuthContext, MenuItem, Role, menu_items, visible_actions
from pyfieldinstall.lifecycle.boxes import BoxManager
from pyfieldinstall.lifecycle.state_machine import (
    VALID_TRANSITIONS,
    InstallationDraft,
    InstallationStateMachine,
    TelemetryOutcome,
    is_actionable,
)
from pyfieldinstall.lifecycle.variance import (
    TelemetryVerdict,
    auto_rejected_reason,
    classify_variance,
    percentage_difference,
)

__all__ = [
    "VALID_TRANSITIONS",
    "Action",
    "AuthContext",
    "BoxManager",
    "InstallationDraft",
    "InstallationStateMachine",
    "MenuItem",
    "Role",
    "TelemetryOutcome",
    "TelemetryVerdict",
    "auto_rejected_reason",
    "classify_variance",
    "is_actionable",
    "menu_items",
    "percentage_difference",
    "visible_actions",
]
