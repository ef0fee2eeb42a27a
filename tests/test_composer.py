from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable

import pytest

from pyfieldinstall.composer import ComposedView, LiveAggregationComposer
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import SubscriptionError
from pyfieldinstall.lifecycle import TelemetryVerdict
from pyfieldinstall.store import EntityStores, InMemoryDocumentStore

Settle = Callable[..., Awaitable[None]]


async def _seed_world(store: InMemoryDocumentStore) -> None:
    await store.set("teams", "T1", {"name": "North", "ownerId": "u-owner"})
    await store.set("teams", "T2", {"name": "South", "ownerId": "u-owner"})
    await store.set("teams/T1/members", "m1", {"name": "Ali", "email": "ali@example.com"})
    await store.set("devices", "DEV001", {"teamId": "T1", "boxNumber": "5"})
    await store.set("devices", "DEV002", {"teamId": "T1", "boxNumber": "5"})
    await store.set("locations", "l1", {"locationId": "LOC-1", "latitude": 24.7, "longitude": 46.6})
    await store.set(
        "installations",
        "i1",
        {"deviceId": "DEV001", "locationId": "LOC-1", "status": "pending", "teamId": "T1", "createdAt": 1_700_000_000},
    )


@pytest.mark.asyncio
async def test_initial_view_joins_all_collections(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)

    async with LiveAggregationComposer(stores) as composer:
        await settle()
        view = composer.view

    assert view.ready
    assert view.healthy
    assert len(view.installations) == 1
    enriched = view.installations[0]
    assert enriched.device is not None and enriched.location is not None and enriched.team is not None
    assert view.box_groups[0].installed_count == 1
    assert view.box_groups[0].pending_count == 1
    assert view.stats.pending == 1
    assert len(view.markers) == 1
    assert [m.name for m in view.members["T1"]] == ["Ali"]
    assert view.members["T2"] == ()


@pytest.mark.asyncio
async def test_each_emission_produces_a_new_revision(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)
    seen: list[int] = []

    async with LiveAggregationComposer(stores) as composer:
        composer.add_listener(lambda view: seen.append(view.revision))
        await settle()
        before = composer.view.revision

        await store.update("installations", "i1", {"status": "verified"})
        view = await composer.wait_for_revision(before + 1, timeout=1.0)

    assert view is not None
    assert view.stats.verified == 1
    assert seen == sorted(seen)
    assert seen[-1] == view.revision


@pytest.mark.asyncio
async def test_subscription_failure_is_isolated(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)

    async with LiveAggregationComposer(stores) as composer:
        await settle()
        assert store.fail_listeners("locations", RuntimeError("permission denied")) == 1
        await settle()

        view = composer.view
        assert not view.healthy
        error = view.errors["locations"]
        assert isinstance(error, SubscriptionError)
        assert error.collection == "locations"
        # last good snapshot is kept
        assert view.installations[0].location is not None

        await store.set("devices", "DEV003", {"teamId": "T2", "boxNumber": "9"})
        await settle()
        assert {g.team_id for g in composer.view.box_groups} == {"T1", "T2"}
        assert "locations" in composer.view.errors


@pytest.mark.asyncio
async def test_member_feeds_rebuilt_on_team_change(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)

    async with LiveAggregationComposer(stores) as composer:
        await settle()
        assert composer.member_feed_count == 2
        assert store.listener_count("teams/T1/members") == 1

        await store.set("teams", "T3", {"name": "East"})
        await settle()
        assert composer.member_feed_count == 3
        for team_id in ("T1", "T2", "T3"):
            assert store.listener_count(f"teams/{team_id}/members") == 1

        await store.delete("teams", "T1")
        await settle()
        assert composer.member_feed_count == 2
        assert store.listener_count("teams/T1/members") == 0
        assert "T1" not in composer.view.members

        await store.set("teams/T2/members", "m9", {"name": "Huda"})
        await settle()
        assert [m.name for m in composer.view.members["T2"]] == ["Huda"]


@pytest.mark.asyncio
async def test_member_feed_error_dropped_with_its_team(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)

    async with LiveAggregationComposer(stores) as composer:
        await settle()
        assert store.fail_listeners("teams/T1/members", RuntimeError("permission denied")) == 1
        await settle()
        assert set(composer.view.errors) == {"teams/T1/members"}

        await store.delete("teams", "T1")
        await settle()

        view = composer.view
        assert composer.member_feed_count == 1
        assert dict(view.errors) == {}
        assert view.healthy


@pytest.mark.asyncio
async def test_exit_releases_every_subscription(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)

    async with LiveAggregationComposer(stores) as composer:
        await settle()
        assert composer.active_subscriptions == 6

    assert composer.active_subscriptions == 0
    for path in ("devices", "locations", "teams", "installations", "teams/T1/members", "teams/T2/members"):
        assert store.listener_count(path) == 0


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_composer(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)
    received: list[ComposedView] = []

    def _broken(_view: ComposedView) -> None:
        raise RuntimeError("render failed")

    async with LiveAggregationComposer(stores) as composer:
        composer.add_listener(_broken)
        remove = composer.add_listener(received.append)
        await settle()
        assert received

        remove()
        count = len(received)
        await store.update("installations", "i1", {"status": "verified"})
        await settle()
        assert len(received) == count
        assert composer.view.stats.verified == 1


@pytest.mark.asyncio
async def test_wait_for_revision_times_out(stores: EntityStores, settle: Settle) -> None:
    async with LiveAggregationComposer(stores) as composer:
        await settle()
        assert await composer.wait_for_revision(composer.view.revision + 50, timeout=0.05) is None
        assert await composer.wait_for_revision(composer.view.revision) is composer.view


@pytest.mark.asyncio
async def test_stop_releases_pending_waiters(stores: EntityStores, settle: Settle) -> None:
    async with LiveAggregationComposer(stores) as composer:
        await settle()
        waiter = asyncio.ensure_future(composer.wait_for_revision(composer.view.revision + 50))
        await settle()

    assert await waiter is None
    assert not waiter.cancelled()


@pytest.mark.asyncio
async def test_verification_queue_uses_configured_thresholds(
    store: InMemoryDocumentStore, stores: EntityStores, settle: Settle
) -> None:
    await _seed_world(store)
    await store.update("installations", "i1", {"sensorReading": 100.0, "latestDisCm": 107.0})

    async with LiveAggregationComposer(stores) as composer:
        await settle()
        default_item = composer.view.verification_queue[0]

    config = FieldInstallConfig(pre_verify_threshold_pct=8.0, auto_reject_threshold_pct=12.0)
    async with LiveAggregationComposer(stores, config=config) as composer:
        await settle()
        lenient_item = composer.view.verification_queue[0]

    assert default_item.verdict == TelemetryVerdict.NEEDS_REVIEW
    assert lenient_item.verdict == TelemetryVerdict.PRE_VERIFIED


def test_composed_view_is_immutable() -> None:
    view = ComposedView(members={"T1": ()})

    with pytest.raises(dataclasses.FrozenInstanceError):
        view.revision = 5  # type: ignore[misc]
    with pytest.raises(TypeError):
        view.members["T2"] = ()  # type: ignore[index]
