from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from pyfieldinstall._constants import SYSTEM_AUTO_REJECTED_BY, SYSTEM_PRE_VERIFIED_BY
from pyfieldinstall.exceptions import InstallationInFlightError, InvalidTransitionError, NotFoundError
from pyfieldinstall.lifecycle.state_machine import (
    VALID_TRANSITIONS,
    InstallationDraft,
    InstallationStateMachine,
    is_actionable,
)
from pyfieldinstall.lifecycle.variance import TelemetryVerdict
from pyfieldinstall.models import DeviceStatus, Installation, InstallationStatus, ServerData
from pyfieldinstall.store import EntityStores, InMemoryDocumentStore


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _machine(stores: EntityStores) -> InstallationStateMachine:
    return InstallationStateMachine(stores, clock=_Clock())


def _draft(device_id: str = "DEV001", installer: str = "u-installer", reading: float = 100.0) -> InstallationDraft:
    return InstallationDraft(
        device_id=device_id,
        location_id="LOC-1",
        sensor_reading=reading,
        installed_by=installer,
        installed_by_name="Ali",
        team_id="T1",
        latitude=24.7,
        longitude=46.6,
    )


async def _submitted(
    store: InMemoryDocumentStore,
    stores: EntityStores,
    *,
    device_id: str = "DEV001",
    reading: float = 100.0,
) -> Installation:
    await store.set("devices", device_id, {"productId": "P1"})
    return await _machine(stores).submit(_draft(device_id=device_id, reading=reading))


def test_transition_table_matches_lifecycle() -> None:
    assert VALID_TRANSITIONS[InstallationStatus.PENDING] == {InstallationStatus.VERIFIED, InstallationStatus.FLAGGED}
    assert VALID_TRANSITIONS[InstallationStatus.FLAGGED] == {InstallationStatus.VERIFIED}
    assert VALID_TRANSITIONS[InstallationStatus.VERIFIED] == frozenset()


def test_draft_rejects_non_positive_reading() -> None:
    with pytest.raises(ValidationError):
        _draft(reading=0)
    with pytest.raises(ValidationError):
        _draft(reading=float("nan"))


class TestSubmit:
    @pytest.mark.asyncio
    async def test_creates_pending_installation_and_marks_device_installed(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        installation = await _submitted(store, stores)

        assert installation.status == InstallationStatus.PENDING
        assert installation.system_pre_verified is False
        assert installation.installed_by_name == "Ali"
        assert installation.created_at is not None
        assert is_actionable(installation)
        device = await stores.devices.get_by_id("DEV001")
        assert device.status == DeviceStatus.INSTALLED

    @pytest.mark.asyncio
    async def test_unknown_device_raises_not_found(self, stores: EntityStores) -> None:
        with pytest.raises(NotFoundError):
            await _machine(stores).submit(_draft(device_id="NOPE"))

    @pytest.mark.asyncio
    async def test_installer_blocked_while_previous_is_actionable(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        first = await _submitted(store, stores)
        await store.set("devices", "DEV002", {"productId": "P1"})
        machine = _machine(stores)

        with pytest.raises(InstallationInFlightError) as excinfo:
            await machine.submit(_draft(device_id="DEV002"))
        assert excinfo.value.installation_id == first.id

        await machine.verify(first.id, "u-verifier")
        second = await machine.submit(_draft(device_id="DEV002"))
        assert second.status == InstallationStatus.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_submits_leave_one_actionable(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        await store.set("devices", "DEV001", {"productId": "P1"})
        await store.set("devices", "DEV002", {"productId": "P1"})
        machine = _machine(stores)

        results = await asyncio.gather(
            machine.submit(_draft(device_id="DEV001")),
            machine.submit(_draft(device_id="DEV002")),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, Installation)]
        rejected = [r for r in results if isinstance(r, InstallationInFlightError)]
        assert len(created) == 1
        assert len(rejected) == 1
        assert rejected[0].installation_id == created[0].id
        stored = await stores.installations.query_by_equality("installed_by", "u-installer")
        assert [i.id for i in stored if is_actionable(i)] == [created[0].id]

    @pytest.mark.asyncio
    async def test_other_installers_are_not_blocked(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        await _submitted(store, stores)
        await store.set("devices", "DEV002", {"productId": "P1"})
        other = await _machine(stores).submit(_draft(device_id="DEV002", installer="u-other"))
        assert other.installed_by == "u-other"

    @pytest.mark.asyncio
    async def test_too_many_images_rejected(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        await store.set("devices", "DEV001", {"productId": "P1"})
        draft = _draft().model_copy(update={"image_urls": tuple(f"https://img/{i}" for i in range(5))})
        with pytest.raises(ValueError):
            await _machine(stores).submit(draft)


class TestHumanDecisions:
    @pytest.mark.asyncio
    async def test_verify_is_idempotent(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)

        first = await machine.verify(installation.id, "u-verifier")
        second = await machine.verify(installation.id, "u-other")

        assert first.status == InstallationStatus.VERIFIED
        assert second.verified_at == first.verified_at
        assert second.verified_by == "u-verifier"
        device = await stores.devices.get_by_id("DEV001")
        assert device.status == DeviceStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_flag_requires_reason(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        with pytest.raises(ValueError):
            await _machine(stores).flag(installation.id, "u-verifier", "   ")

    @pytest.mark.asyncio
    async def test_flag_sets_reason_and_device_status(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        flagged = await _machine(stores).flag(installation.id, "u-verifier", "  photo is blurry ")

        assert flagged.status == InstallationStatus.FLAGGED
        assert flagged.flagged_reason == "photo is blurry"
        assert not is_actionable(flagged)
        device = await stores.devices.get_by_id("DEV001")
        assert device.status == DeviceStatus.FLAGGED

    @pytest.mark.asyncio
    async def test_flag_on_verified_is_rejected_and_record_unchanged(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)
        verified = await machine.verify(installation.id, "u-verifier")

        with pytest.raises(InvalidTransitionError) as excinfo:
            await machine.flag(installation.id, "u-verifier", "changed my mind")

        assert excinfo.value.current == "verified"
        assert await stores.installations.get_by_id(installation.id) == verified

    @pytest.mark.asyncio
    async def test_verify_flagged_clears_reason(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)
        await machine.flag(installation.id, "u-verifier", "wrong location")

        verified = await machine.verify(installation.id, "u-manager")

        assert verified.status == InstallationStatus.VERIFIED
        assert verified.flagged_reason is None
        raw = await store.get("installations", installation.id)
        assert raw is not None and "flaggedReason" not in raw

    @pytest.mark.asyncio
    async def test_stale_expected_status_is_rejected(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)
        await machine.flag(installation.id, "u-verifier", "blurry")

        with pytest.raises(InvalidTransitionError) as excinfo:
            await machine.verify(installation.id, "u-other", expected_status=InstallationStatus.PENDING)
        assert excinfo.value.expected == "pending"
        assert excinfo.value.current == "flagged"


class TestPreVerification:
    @pytest.mark.asyncio
    async def test_pending_moves_to_verified(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        updated = await _machine(stores).record_system_pre_verification(installation.id, True)

        assert updated.status == InstallationStatus.VERIFIED
        assert updated.system_pre_verified is True
        assert updated.system_pre_verified_at is not None
        assert updated.verified_by == SYSTEM_PRE_VERIFIED_BY

    @pytest.mark.asyncio
    async def test_failed_comparison_writes_nothing(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        updated = await _machine(stores).record_system_pre_verification(installation.id, False)
        assert updated == installation

    @pytest.mark.asyncio
    async def test_human_flag_is_kept(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)
        await machine.flag(installation.id, "u-verifier", "blurry")

        updated = await machine.record_system_pre_verification(installation.id, True)

        assert updated.status == InstallationStatus.FLAGGED
        assert updated.flagged_reason == "blurry"
        assert updated.system_pre_verified is True

    @pytest.mark.asyncio
    async def test_pre_verification_never_resets(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)
        first = await machine.record_system_pre_verification(installation.id, True)
        again = await machine.record_system_pre_verification(installation.id, True)
        failed = await machine.record_system_pre_verification(installation.id, False)

        assert again.system_pre_verified_at == first.system_pre_verified_at
        assert failed.system_pre_verified is True

    @pytest.mark.asyncio
    async def test_concurrent_flag_loses_to_pre_verification(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)

        pre, flag = await asyncio.gather(
            machine.record_system_pre_verification(installation.id, True),
            machine.flag(installation.id, "u-verifier", "looks wrong"),
            return_exceptions=True,
        )

        assert isinstance(flag, InvalidTransitionError)
        assert isinstance(pre, Installation)
        stored = await stores.installations.get_by_id(installation.id)
        assert stored.status == InstallationStatus.VERIFIED
        assert stored.system_pre_verified is True
        assert stored.flagged_reason is None


class TestApplyTelemetry:
    @pytest.mark.asyncio
    async def test_close_reading_pre_verifies(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores, reading=100.0)
        outcome = await _machine(stores).apply_telemetry(installation.id, 103.0)

        assert outcome.verdict == TelemetryVerdict.PRE_VERIFIED
        assert outcome.applied is True
        assert outcome.variance_pct == pytest.approx(3.0)
        assert outcome.installation.status == InstallationStatus.VERIFIED
        assert outcome.installation.latest_dis_cm == 103.0

    @pytest.mark.asyncio
    async def test_far_reading_auto_rejects(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores, reading=100.0)
        server = ServerData(device_id="DEV001", sensor_data=120.0)
        outcome = await _machine(stores).apply_telemetry(installation.id, server)

        assert outcome.verdict == TelemetryVerdict.AUTO_REJECTED
        assert outcome.installation.status == InstallationStatus.FLAGGED
        assert outcome.installation.flagged_reason == "Auto-rejected: variance 20.00% > 10%"
        assert outcome.installation.verified_by == SYSTEM_AUTO_REJECTED_BY
        assert outcome.installation.is_auto_flagged

    @pytest.mark.asyncio
    async def test_middle_band_waits_for_human(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores, reading=100.0)
        outcome = await _machine(stores).apply_telemetry(installation.id, 107.0)

        assert outcome.verdict == TelemetryVerdict.NEEDS_REVIEW
        assert outcome.applied is False
        assert outcome.installation.status == InstallationStatus.PENDING
        assert outcome.installation.latest_dis_cm == 107.0

    @pytest.mark.asyncio
    async def test_zero_reading_means_no_data(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        outcome = await _machine(stores).apply_telemetry(installation.id, 0)

        assert outcome.verdict == TelemetryVerdict.NO_DATA
        assert outcome.installation == installation

    @pytest.mark.asyncio
    async def test_auto_reject_does_not_override_human_verification(
        self, store: InMemoryDocumentStore, stores: EntityStores
    ) -> None:
        installation = await _submitted(store, stores, reading=100.0)
        machine = _machine(stores)
        await machine.verify(installation.id, "u-verifier")

        outcome = await machine.apply_telemetry(installation.id, 150.0)

        assert outcome.verdict == TelemetryVerdict.AUTO_REJECTED
        assert outcome.applied is False
        assert outcome.installation.status == InstallationStatus.VERIFIED


class TestWaitForDecision:
    @pytest.mark.asyncio
    async def test_resolves_when_verified(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        machine = _machine(stores)

        waiter = asyncio.create_task(machine.wait_for_decision(installation.id, timeout=1.0))
        await asyncio.sleep(0)
        await machine.verify(installation.id, "u-verifier")

        decided = await waiter
        assert decided is not None
        assert decided.status == InstallationStatus.VERIFIED
        assert store.listener_count("installations") == 0

    @pytest.mark.asyncio
    async def test_times_out_with_none(self, store: InMemoryDocumentStore, stores: EntityStores) -> None:
        installation = await _submitted(store, stores)
        assert await _machine(stores).wait_for_decision(installation.id, timeout=0.05) is None
        assert store.listener_count("installations") == 0

    @pytest.mark.asyncio
    async def test_missing_installation_raises(self, stores: EntityStores) -> None:
        with pytest.raises(NotFoundError):
            await _machine(stores).wait_for_decision("missing", timeout=1.0)
