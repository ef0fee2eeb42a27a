"""Who may do what.

The caller passes an explicit :class:`AuthContext`; nothing here reads a
global session. All functions are pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pyfieldinstall.lifecycle.state_machine import is_actionable
from pyfieldinstall.models.installation import Installation, InstallationStatus


class Role(StrEnum):
    INSTALLER = "installer"
    VERIFIER = "verifier"
    MANAGER = "manager"
    MINISTRY = "ministry"

    @classmethod
    def _missing_(cls, value: object) -> Role | None:
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        return None


class Action(StrEnum):
    SUBMIT_INSTALLATION = "submit_installation"
    VERIFY = "verify"
    FLAG = "flag"
    VIEW_VERIFICATION_QUEUE = "view_verification_queue"
    VIEW_MAP = "view_map"
    VIEW_STATS = "view_stats"
    VIEW_TEAMS = "view_teams"
    MANAGE_TEAMS = "manage_teams"
    MANAGE_BOXES = "manage_boxes"
    IMPORT_DEVICES = "import_devices"
    BULK_LOOKUP = "bulk_lookup"


@dataclass(frozen=True)
class AuthContext:
    """Identity of the acting user."""

    uid: str
    display_name: str = ""
    role: Role = Role.INSTALLER
    is_admin: bool = False
    team_id: str | None = None

    @property
    def can_review(self) -> bool:
        return self.is_admin or self.role in (Role.VERIFIER, Role.MANAGER)


@dataclass(frozen=True)
class MenuItem:
    label: str
    action: Action


def visible_actions(
    ctx: AuthContext,
    installation: Installation | None = None,
    *,
    blocking: Installation | None = None,
) -> frozenset[Action]:
    """Actions the user may take, optionally on one installation.

    ``blocking`` is the user's own outstanding installation, if any; while
    it is actionable the user may not submit another.
    """
    actions: set[Action] = {Action.VIEW_MAP}

    if ctx.role == Role.INSTALLER or ctx.is_admin:
        if blocking is None or not is_actionable(blocking):
            actions.add(Action.SUBMIT_INSTALLATION)
        actions.add(Action.VIEW_TEAMS)

    if ctx.can_review:
        actions.add(Action.VIEW_VERIFICATION_QUEUE)
        if installation is not None:
            if installation.status in (InstallationStatus.PENDING, InstallationStatus.FLAGGED):
                actions.add(Action.VERIFY)
            if installation.status == InstallationStatus.PENDING:
                actions.add(Action.FLAG)

    if ctx.role == Role.MANAGER or ctx.is_admin:
        actions.update((Action.VIEW_TEAMS, Action.MANAGE_TEAMS))

    if ctx.role == Role.MINISTRY or ctx.is_admin:
        actions.add(Action.VIEW_STATS)

    if ctx.is_admin:
        actions.update((Action.MANAGE_BOXES, Action.IMPORT_DEVICES, Action.BULK_LOOKUP))

    return frozenset(actions)


_MENU: tuple[MenuItem, ...] = (
    MenuItem("New Installation", Action.SUBMIT_INSTALLATION),
    MenuItem("Verification Queue", Action.VIEW_VERIFICATION_QUEUE),
    MenuItem("Map", Action.VIEW_MAP),
    MenuItem("Statistics", Action.VIEW_STATS),
    MenuItem("Teams", Action.VIEW_TEAMS),
    MenuItem("Box Management", Action.MANAGE_BOXES),
    MenuItem("Device Import", Action.IMPORT_DEVICES),
    MenuItem("Bulk Lookup", Action.BULK_LOOKUP),
)


def menu_items(ctx: AuthContext, *, blocking: Installation | None = None) -> tuple[MenuItem, ...]:
    """Navigation entries for the user, in display order."""
    allowed = visible_actions(ctx, blocking=blocking)
    return tuple(item for item in _MENU if item.action in allowed)
