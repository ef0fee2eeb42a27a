"""Live aggregation over the store change feeds.

The composer keeps one subscription per collection, holds the latest
snapshot of each, and recomputes every derived view whenever any feed
emits. Consumers receive immutable :class:`ComposedView` objects.

Usage::

    async with LiveAggregationComposer(stores) as composer:
        composer.add_listener(render)
        view = await composer.wait_for_revision()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pyfieldinstall import _constants as C
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.enrichment import (
    BoxGroup,
    EnrichedInstallation,
    InstallationStats,
    MapMarkerSet,
    OpenBoxSummary,
    TeamRollup,
    VerificationItem,
    box_groups,
    build_indices,
    enrich,
    installation_stats,
    map_markers,
    open_box_summary,
    team_rollup,
    verification_queue,
)
from pyfieldinstall.exceptions import SubscriptionError
from pyfieldinstall.models.device import Device
from pyfieldinstall.models.installation import Installation
from pyfieldinstall.models.location import Location
from pyfieldinstall.models.team import Team, TeamMember
from pyfieldinstall.store.adapters import EntityStores
from pyfieldinstall.store.base import ListenerRegistration

_logger = logging.getLogger(__name__)

_FEEDS = (C.DEVICES, C.LOCATIONS, C.TEAMS, C.INSTALLATIONS)

ViewListener = Callable[["ComposedView"], None]


@dataclass(frozen=True, slots=True)
class ComposedView:
    """One consistent rendering of all four collections."""

    revision: int = 0
    installations: tuple[EnrichedInstallation, ...] = ()
    box_groups: tuple[BoxGroup, ...] = ()
    team_rollup: TeamRollup = field(default_factory=TeamRollup)
    markers: MapMarkerSet = field(default_factory=MapMarkerSet)
    stats: InstallationStats = field(default_factory=InstallationStats)
    verification_queue: tuple[VerificationItem, ...] = ()
    open_boxes: OpenBoxSummary | None = None
    """Only computed when the composer is scoped to one team."""
    members: Mapping[str, tuple[TeamMember, ...]] = field(default_factory=dict)
    errors: Mapping[str, SubscriptionError] = field(default_factory=dict)
    """Failed feeds by collection path; their last good snapshot is still used."""
    loaded: frozenset[str] = frozenset()
    """Collections that have delivered at least one snapshot."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "members", MappingProxyType(dict(self.members)))
        object.__setattr__(self, "errors", MappingProxyType(dict(self.errors)))

    @property
    def healthy(self) -> bool:
        return not self.errors

    @property
    def ready(self) -> bool:
        return all(name in self.loaded for name in _FEEDS)


class LiveAggregationComposer:
    """Maintains :class:`ComposedView` from the store subscriptions."""

    def __init__(
        self,
        stores: EntityStores,
        *,
        team_filter: str | None = None,
        config: FieldInstallConfig | None = None,
        watch_members: bool = True,
    ) -> None:
        self._stores = stores
        self._team_filter = team_filter
        self._config = config or FieldInstallConfig()
        self._watch_members = watch_members

        self._devices: tuple[Device, ...] = ()
        self._locations: tuple[Location, ...] = ()
        self._teams: tuple[Team, ...] = ()
        self._installations: tuple[Installation, ...] = ()
        self._members: dict[str, tuple[TeamMember, ...]] = {}
        self._errors: dict[str, SubscriptionError] = {}
        self._loaded: set[str] = set()

        self._registrations: list[ListenerRegistration] = []
        self._member_registrations: dict[str, ListenerRegistration] = {}
        self._listeners: list[ViewListener] = []
        self._waiters: list[tuple[int, asyncio.Future[ComposedView | None]]] = []
        self._view = ComposedView()
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LiveAggregationComposer:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def view(self) -> ComposedView:
        return self._view

    @property
    def active_subscriptions(self) -> int:
        regs = [*self._registrations, *self._member_registrations.values()]
        return sum(1 for reg in regs if reg.active)

    @property
    def member_feed_count(self) -> int:
        return len(self._member_registrations)

    def start(self) -> None:
        """Open the four collection subscriptions (idempotent)."""
        if self._running:
            return
        self._running = True
        s = self._stores
        self._registrations = [
            s.devices.subscribe(self._feed(C.DEVICES, "_devices"), self._failure(C.DEVICES)),
            s.locations.subscribe(self._feed(C.LOCATIONS, "_locations"), self._failure(C.LOCATIONS)),
            s.teams.subscribe(self._on_teams, self._failure(C.TEAMS), order_by="name"),
            s.installations.subscribe(self._feed(C.INSTALLATIONS, "_installations"), self._failure(C.INSTALLATIONS)),
        ]
        _logger.debug("Composer started (team_filter=%s)", self._team_filter)

    def stop(self) -> None:
        """Release every subscription; pending waiters resolve to ``None``."""
        self._running = False
        for reg in self._registrations:
            reg.remove()
        self._registrations = []
        self._clear_member_feeds()
        waiters, self._waiters = self._waiters, []
        for _target, fut in waiters:
            if not fut.done():
                fut.set_result(None)
        _logger.debug("Composer stopped at revision %d", self._view.revision)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    def add_listener(self, callback: ViewListener) -> Callable[[], None]:
        """Register a callback for every new view; returns its remover."""
        self._listeners.append(callback)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(callback)

        return _remove

    async def wait_for_revision(
        self,
        revision: int | None = None,
        *,
        timeout: float | None = None,
    ) -> ComposedView | None:
        """Wait for a view with at least the given revision.

        Without ``revision``, waits for the next recomposition. Returns
        ``None`` on timeout or when the composer stops first.
        """
        target = self._view.revision + 1 if revision is None else revision
        if self._view.revision >= target:
            return self._view
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[ComposedView | None] = loop.create_future()
        waiter = (target, fut)
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(fut, timeout)
        except TimeoutError:
            return None
        finally:
            with contextlib.suppress(ValueError):
                self._waiters.remove(waiter)

    # ------------------------------------------------------------------
    # Feed handlers
    # ------------------------------------------------------------------

    def _feed(self, collection: str, attr: str) -> Callable[[tuple[Any, ...]], None]:
        def _on_snapshot(models: tuple[Any, ...]) -> None:
            if not self._running:
                return
            setattr(self, attr, models)
            self._loaded.add(collection)
            self._errors.pop(collection, None)
            self._recompose()

        return _on_snapshot

    def _on_teams(self, teams: tuple[Team, ...]) -> None:
        if not self._running:
            return
        self._teams = teams
        self._loaded.add(C.TEAMS)
        self._errors.pop(C.TEAMS, None)
        if self._watch_members:
            self._rebuild_member_feeds(teams)
        self._recompose()

    def _failure(self, collection: str) -> Callable[[Exception], None]:
        def _on_error(exc: Exception) -> None:
            if not self._running:
                return
            error = SubscriptionError(f"{collection} subscription failed: {exc}", collection=collection)
            error.__cause__ = exc
            _logger.warning("Subscription to %s failed; keeping last snapshot", collection, exc_info=exc)
            self._errors[collection] = error
            self._recompose()

        return _on_error

    def _rebuild_member_feeds(self, teams: tuple[Team, ...]) -> None:
        self._clear_member_feeds()
        team_ids = {team.id for team in teams}
        for stale in set(self._members) - team_ids:
            del self._members[stale]
        live_paths = {C.team_members_path(team_id) for team_id in team_ids}
        for path in [p for p in self._errors if p not in _FEEDS and p not in live_paths]:
            del self._errors[path]
        for team_id in sorted(team_ids):
            self._member_registrations[team_id] = self._stores.teams.subscribe_members(
                team_id,
                self._member_feed(team_id),
                self._failure(C.team_members_path(team_id)),
            )

    def _clear_member_feeds(self) -> None:
        for reg in self._member_registrations.values():
            reg.remove()
        self._member_registrations.clear()

    def _member_feed(self, team_id: str) -> Callable[[tuple[TeamMember, ...]], None]:
        def _on_members(members: tuple[TeamMember, ...]) -> None:
            reg = self._member_registrations.get(team_id)
            if not self._running or reg is None or not reg.active:
                return
            self._members[team_id] = members
            self._errors.pop(C.team_members_path(team_id), None)
            self._recompose()

        return _on_members

    # ------------------------------------------------------------------
    # Recomposition
    # ------------------------------------------------------------------

    def _recompose(self) -> None:
        indices = build_indices(self._devices, self._locations, self._teams, self._installations)
        enriched = enrich(self._installations, indices)
        view = ComposedView(
            revision=self._view.revision + 1,
            installations=enriched,
            box_groups=box_groups(self._devices, indices, self._team_filter),
            team_rollup=team_rollup(self._installations, indices),
            markers=map_markers(enriched),
            stats=installation_stats(self._installations),
            verification_queue=verification_queue(enriched, self._config),
            open_boxes=open_box_summary(self._devices, self._team_filter) if self._team_filter else None,
            members=self._members,
            errors=self._errors,
            loaded=frozenset(self._loaded),
        )
        self._view = view
        self._publish(view)

    def _publish(self, view: ComposedView) -> None:
        for callback in list(self._listeners):
            try:
                callback(view)
            except Exception:
                _logger.warning("Composed view listener failed", exc_info=True)

        remaining: list[tuple[int, asyncio.Future[ComposedView | None]]] = []
        for target, fut in self._waiters:
            if fut.done():
                continue
            if view.revision >= target:
                fut.set_result(view)
            else:
                remaining.append((target, fut))
        self._waiters = remaining
