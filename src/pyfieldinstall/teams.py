"""Team administration.

Membership is recorded twice: in the ``teams/{id}/members`` sub-collection
(profile data shown to managers) and in the flat ``teamMembers`` table
(used for access checks). The two cannot be written atomically, so team
deletion is a best-effort cascade and :meth:`TeamService.reconcile_memberships`
cleans up whatever a failed cascade left behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pyfieldinstall import _constants as C
from pyfieldinstall.exceptions import FieldInstallError, PermissionDeniedError
from pyfieldinstall.models.team import MembershipRole, Team, TeamMember
from pyfieldinstall.store.adapters import EntityStores

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TeamDeletionReport:
    team_id: str
    team_deleted: bool = False
    members_deleted: int = 0
    memberships_deleted: int = 0
    failures: tuple[str, ...] = ()
    """``path/id`` of every document that could not be deleted."""

    @property
    def complete(self) -> bool:
        return self.team_deleted and not self.failures


@dataclass(frozen=True)
class ReconcileReport:
    removed: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


@dataclass
class _Cascade:
    deleted: int = 0
    failures: list[str] = field(default_factory=list)


class TeamService:
    def __init__(self, stores: EntityStores) -> None:
        self._stores = stores

    async def create_team(self, name: str, owner_id: str, owner_name: str = "") -> Team:
        """Create a team owned by ``owner_id`` and record the owner as its admin."""
        name = name.strip()
        if not name:
            raise ValueError("Team name is required")
        if not owner_id:
            raise ValueError("owner_id is required")

        store = self._stores.teams.store
        now = _utcnow()
        team_id = await store.add(
            C.TEAMS,
            {
                "name": name,
                "ownerId": owner_id,
                "ownerName": owner_name,
                "createdAt": now,
                "updatedAt": now,
            },
        )
        await store.add(
            C.TEAM_MEMBERSHIPS,
            {
                "teamId": team_id,
                "userId": owner_id,
                "role": MembershipRole.ADMIN.value,
                "joinedAt": now,
            },
        )
        _logger.debug("Created team %s (%s) owned by %s", team_id, name, owner_id)
        return await self._stores.teams.get_by_id(team_id)

    async def add_member(self, team_id: str, member: TeamMember) -> TeamMember:
        """Add a member profile and the matching flat membership row.

        ``member.id`` is the member's user id and becomes the profile's
        document id.
        """
        await self._stores.teams.get_by_id(team_id)
        store = self._stores.teams.store
        member_id = member.id
        data = member.to_document()
        data.setdefault("addedAt", _utcnow())
        await store.set(C.team_members_path(team_id), member_id, data)
        await store.add(
            C.TEAM_MEMBERSHIPS,
            {
                "teamId": team_id,
                "userId": member_id,
                "role": MembershipRole.MEMBER.value,
                "joinedAt": data["addedAt"],
            },
        )
        return await self._stores.teams.members_adapter(team_id).get_by_id(member_id)

    async def delete_team(self, team_id: str, requester_id: str) -> TeamDeletionReport:
        """Delete a team, its member profiles and its flat membership rows.

        Only the owner may delete. Every document is attempted even when
        earlier deletes fail; failures are listed in the report.
        """
        team = await self._stores.teams.get_by_id(team_id)
        if team.owner_id != requester_id:
            raise PermissionDeniedError(f"Only the owner of team {team_id} may delete it")

        store = self._stores.teams.store
        team_deleted = True
        failures: list[str] = []
        try:
            await store.delete(C.TEAMS, team_id)
        except FieldInstallError:
            _logger.warning("Failed to delete team %s", team_id, exc_info=True)
            team_deleted = False
            failures.append(f"{C.TEAMS}/{team_id}")

        members_path = C.team_members_path(team_id)
        members = await self._delete_all(members_path, (await store.query(members_path)).ids())
        rows = await store.query(C.TEAM_MEMBERSHIPS, "teamId", team_id)
        memberships = await self._delete_all(C.TEAM_MEMBERSHIPS, rows.ids())
        failures.extend(members.failures)
        failures.extend(memberships.failures)

        report = TeamDeletionReport(
            team_id=team_id,
            team_deleted=team_deleted,
            members_deleted=members.deleted,
            memberships_deleted=memberships.deleted,
            failures=tuple(failures),
        )
        if failures:
            _logger.warning("Team %s deletion left %d document(s) behind", team_id, len(failures))
        return report

    async def reconcile_memberships(self) -> ReconcileReport:
        """Remove flat membership rows whose team no longer exists."""
        store = self._stores.memberships.store
        team_ids = set((await store.query(C.TEAMS)).ids())
        orphans = [
            m.id for m in await self._stores.memberships.snapshot() if m.team_id not in team_ids
        ]
        cascade = await self._delete_all(C.TEAM_MEMBERSHIPS, orphans)
        removed = tuple(doc_id for doc_id in orphans if f"{C.TEAM_MEMBERSHIPS}/{doc_id}" not in cascade.failures)
        if removed:
            _logger.info("Removed %d orphaned membership row(s)", len(removed))
        return ReconcileReport(removed=removed, failures=tuple(cascade.failures))

    async def _delete_all(self, path: str, doc_ids: list[str]) -> _Cascade:
        store = self._stores.teams.store
        result = _Cascade()
        for doc_id in doc_ids:
            try:
                await store.delete(path, doc_id)
            except FieldInstallError:
                _logger.warning("Failed to delete %s/%s", path, doc_id, exc_info=True)
                result.failures.append(f"{path}/{doc_id}")
            else:
                result.deleted += 1
        return result
