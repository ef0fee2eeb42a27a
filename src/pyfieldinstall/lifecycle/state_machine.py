"""Installation verification state machine.

States are ``pending`` (initial), ``flagged`` and ``verified`` (terminal).
A separate boolean axis, ``system_pre_verified``, records whether the
automated telemetry comparison approved the installation.

Every transition is committed with a compare-and-set on the status the
caller observed. If another writer got there first (an automated check
racing a human verifier, or the other way round) the write is rejected
instead of silently overwriting the other decision.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyfieldinstall._constants import SYSTEM_AUTO_REJECTED_BY, SYSTEM_PRE_VERIFIED_BY
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import (
    ConcurrentModification,
    InstallationInFlightError,
    InvalidTransitionError,
    NotFoundError,
)
from pyfieldinstall.lifecycle.variance import (
    TelemetryVerdict,
    auto_rejected_reason,
    classify_variance,
    percentage_difference,
)
from pyfieldinstall.models.device import DeviceStatus
from pyfieldinstall.models.installation import Installation, InstallationStatus
from pyfieldinstall.models.telemetry import ServerData
from pyfieldinstall.store.adapters import EntityStores
from pyfieldinstall.store.base import ListenerRegistration

_logger = logging.getLogger(__name__)

# Valid state transitions: from_state -> {to_states}
VALID_TRANSITIONS: dict[InstallationStatus, frozenset[InstallationStatus]] = {
    InstallationStatus.PENDING: frozenset({InstallationStatus.VERIFIED, InstallationStatus.FLAGGED}),
    InstallationStatus.FLAGGED: frozenset({InstallationStatus.VERIFIED}),  # Manual override
    InstallationStatus.VERIFIED: frozenset(),  # Terminal state
}

# Automated pre-verification re-reads and retries this many times when
# it loses a compare-and-set race.
_PRE_VERIFY_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InstallationDraft(BaseModel):
    """Everything an installer supplies when submitting an installation.

    ``installed_by_name`` and ``team_id`` are denormalized display fields;
    the caller is responsible for passing their current values.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    device_id: str = Field(min_length=1)
    location_id: str | None = None
    sensor_reading: float
    installed_by: str = Field(min_length=1)
    installed_by_name: str = ""
    team_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    image_urls: tuple[str, ...] = ()
    video_url: str | None = None

    @field_validator("sensor_reading")
    @classmethod
    def _check_reading(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("sensor_reading must be a finite positive number")
        return value


class TelemetryOutcome(BaseModel):
    """Result of feeding one server reading into the state machine."""

    model_config = ConfigDict(frozen=True)

    installation: Installation
    verdict: TelemetryVerdict
    variance_pct: float | None = None
    server_reading: float | None = None
    applied: bool = False
    """Whether the automated decision was committed (``False`` when a
    human decision already stood)."""


def is_actionable(installation: Installation) -> bool:
    """True while an installation still waits for any verification."""
    return installation.status == InstallationStatus.PENDING and not installation.system_pre_verified


class InstallationStateMachine:
    """Drives installations through verification against the store."""

    def __init__(
        self,
        stores: EntityStores,
        *,
        config: FieldInstallConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._stores = stores
        self._config = config or FieldInstallConfig()
        self._clock = clock
        self._submit_locks: dict[str, asyncio.Lock] = {}

    is_actionable = staticmethod(is_actionable)

    @staticmethod
    def can_transition(installation: Installation, target: InstallationStatus) -> tuple[bool, str]:
        """Check if a transition is valid.

        Returns
        -------
        tuple[bool, str]
            ``(is_valid, error_message)``
        """
        current = installation.status
        if target not in VALID_TRANSITIONS.get(current, frozenset()):
            return False, f"Cannot transition from {current.value} to {target.value}"
        return True, ""

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, draft: InstallationDraft) -> Installation:
        """Create a new ``pending`` installation.

        Submissions by the same installer are serialized, so at most one of
        two concurrent calls passes the in-flight check.

        Raises
        ------
        NotFoundError
            The device does not exist.
        InstallationInFlightError
            The installer still has an actionable installation.
        ValueError
            Too many photos were attached.
        """
        if len(draft.image_urls) > self._config.max_image_urls:
            raise ValueError(
                f"at most {self._config.max_image_urls} images may be attached, got {len(draft.image_urls)}"
            )

        await self._stores.devices.get_by_id(draft.device_id)

        lock = self._submit_locks.setdefault(draft.installed_by, asyncio.Lock())
        async with lock:
            installation = await self._create_if_idle(draft)
        _logger.debug("Submitted installation %s for device %s", installation.id, draft.device_id)

        await self._mirror_device_status(draft.device_id, DeviceStatus.INSTALLED)
        return installation

    async def _create_if_idle(self, draft: InstallationDraft) -> Installation:
        outstanding = await self._stores.installations.query_by_equality("installed_by", draft.installed_by)
        for existing in outstanding:
            if is_actionable(existing):
                raise InstallationInFlightError(
                    f"Installer {draft.installed_by} already has installation {existing.id} awaiting verification",
                    installer_id=draft.installed_by,
                    installation_id=existing.id,
                )

        now = self._clock()
        document: dict[str, Any] = {
            "deviceId": draft.device_id,
            "locationId": draft.location_id,
            "latitude": draft.latitude,
            "longitude": draft.longitude,
            "sensorReading": draft.sensor_reading,
            "status": InstallationStatus.PENDING.value,
            "systemPreVerified": False,
            "installedBy": draft.installed_by,
            "installedByName": draft.installed_by_name,
            "teamId": draft.team_id,
            "imageUrls": list(draft.image_urls) or None,
            "videoUrl": draft.video_url,
            "createdAt": now,
            "updatedAt": now,
        }
        return await self._stores.installations.create(document)

    # ------------------------------------------------------------------
    # Human decisions
    # ------------------------------------------------------------------

    async def verify(
        self,
        installation_id: str,
        verifier_uid: str,
        *,
        expected_status: InstallationStatus | None = None,
    ) -> Installation:
        """Mark an installation verified.

        Allowed from ``pending`` and ``flagged``. Verifying an already
        verified installation is a no-op that returns the stored record.
        ``expected_status`` is the status the verifier saw when deciding;
        if the record has moved on since, the call is rejected.
        """
        current = await self._stores.installations.get_by_id(installation_id)
        if current.status == InstallationStatus.VERIFIED:
            return current
        self._check(current, InstallationStatus.VERIFIED, "verify", expected_status)

        now = self._clock()
        patch = {
            "status": InstallationStatus.VERIFIED.value,
            "verified_by": verifier_uid,
            "verified_at": now,
            "flagged_reason": None,
            "updated_at": now,
        }
        try:
            updated = await self._stores.installations.update_if(
                installation_id, {"status": current.status.value}, patch
            )
        except ConcurrentModification as exc:
            latest = await self._stores.installations.get_by_id(installation_id)
            if latest.status == InstallationStatus.VERIFIED:
                return latest
            raise self._lost_race(latest, "verify", current.status) from exc

        _logger.debug("Installation %s verified by %s", installation_id, verifier_uid)
        await self._mirror_device_status(updated.device_id, DeviceStatus.VERIFIED)
        return updated

    async def flag(
        self,
        installation_id: str,
        verifier_uid: str,
        reason: str,
        *,
        expected_status: InstallationStatus | None = None,
    ) -> Installation:
        """Flag a pending installation with a non-empty reason."""
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A reason is required to flag an installation")

        current = await self._stores.installations.get_by_id(installation_id)
        self._check(current, InstallationStatus.FLAGGED, "flag", expected_status)
        updated = await self._commit_flag(current, verifier_uid, reason)
        _logger.debug("Installation %s flagged by %s", installation_id, verifier_uid)
        return updated

    # ------------------------------------------------------------------
    # Automated decisions
    # ------------------------------------------------------------------

    async def record_system_pre_verification(self, installation_id: str, passed: bool) -> Installation:
        """Record the automated telemetry comparison outcome.

        On a pass, ``system_pre_verified`` is set (once) and a ``pending``
        installation moves to ``verified``. A human flag or verification
        that landed first is kept; only the pre-verification itself is
        recorded then. A failed comparison leaves the record for human
        review and writes nothing.
        """
        current = await self._stores.installations.get_by_id(installation_id)
        if not passed or current.system_pre_verified:
            return current

        for _attempt in range(_PRE_VERIFY_ATTEMPTS):
            now = self._clock()
            patch: dict[str, Any] = {
                "system_pre_verified": True,
                "system_pre_verified_at": now,
                "updated_at": now,
            }
            if current.status == InstallationStatus.PENDING:
                patch.update(
                    status=InstallationStatus.VERIFIED.value,
                    verified_by=SYSTEM_PRE_VERIFIED_BY,
                    verified_at=now,
                )
            try:
                updated = await self._stores.installations.update_if(
                    installation_id,
                    {"status": current.status.value, "system_pre_verified_at": None},
                    patch,
                )
            except ConcurrentModification:
                current = await self._stores.installations.get_by_id(installation_id)
                if current.system_pre_verified:
                    return current
                _logger.debug(
                    "Pre-verification of %s lost a race; status is now %s",
                    installation_id,
                    current.status.value,
                )
                continue

            _logger.debug("Installation %s system pre-verified (status=%s)", installation_id, updated.status.value)
            if current.status == InstallationStatus.PENDING:
                await self._mirror_device_status(updated.device_id, DeviceStatus.VERIFIED)
            return updated

        raise InvalidTransitionError(
            f"Could not record pre-verification for {installation_id}: record kept changing",
            installation_id=installation_id,
            action="pre_verify",
            current=current.status.value,
        )

    async def apply_telemetry(
        self,
        installation_id: str,
        server: ServerData | float | None,
    ) -> TelemetryOutcome:
        """Compare a server reading with the installer's and act on it.

        Below the pre-verify threshold the installation is pre-verified,
        above the auto-reject threshold it is flagged by the system, and
        in between it waits for a human. A missing or non-positive server
        reading means the backend has no data yet and nothing is written.
        Automated decisions never override a human one.
        """
        reading = server.sensor_data if isinstance(server, ServerData) else server
        current = await self._stores.installations.get_by_id(installation_id)

        if reading is None or not math.isfinite(reading) or reading <= 0:
            return TelemetryOutcome(installation=current, verdict=TelemetryVerdict.NO_DATA)

        await self._stores.installations.update_fields(installation_id, latest_dis_cm=reading)
        current = await self._stores.installations.get_by_id(installation_id)

        variance = percentage_difference(current.sensor_reading, reading)
        verdict = classify_variance(
            variance,
            pre_verify_threshold_pct=self._config.pre_verify_threshold_pct,
            auto_reject_threshold_pct=self._config.auto_reject_threshold_pct,
        )
        outcome: dict[str, Any] = {"verdict": verdict, "variance_pct": variance, "server_reading": reading}

        if verdict == TelemetryVerdict.PRE_VERIFIED:
            updated = await self.record_system_pre_verification(installation_id, True)
            return TelemetryOutcome(installation=updated, applied=updated.system_pre_verified, **outcome)

        if verdict == TelemetryVerdict.AUTO_REJECTED and variance is not None:
            if current.status != InstallationStatus.PENDING:
                return TelemetryOutcome(installation=current, **outcome)
            reason = auto_rejected_reason(variance, self._config.auto_reject_threshold_pct)
            try:
                updated = await self._commit_flag(current, SYSTEM_AUTO_REJECTED_BY, reason)
            except InvalidTransitionError:
                latest = await self._stores.installations.get_by_id(installation_id)
                return TelemetryOutcome(installation=latest, **outcome)
            _logger.info("Installation %s auto-rejected: %s", installation_id, reason)
            return TelemetryOutcome(installation=updated, applied=True, **outcome)

        current = await self.record_system_pre_verification(installation_id, False)
        return TelemetryOutcome(installation=current, **outcome)

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def watch(
        self,
        installation_id: str,
        callback: Callable[[Installation | None], None],
    ) -> ListenerRegistration:
        """Follow one installation through its document change feed."""
        return self._stores.installations.watch(installation_id, callback)

    async def wait_for_decision(self, installation_id: str, *, timeout: float | None = None) -> Installation | None:
        """Wait until the installation is no longer actionable.

        Returns the installation once it has been verified, flagged or
        pre-verified, or ``None`` on timeout.

        Raises
        ------
        NotFoundError
            The installation does not exist (or was deleted while waiting).
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Installation] = loop.create_future()

        def _on_change(installation: Installation | None) -> None:
            if future.done():
                return
            if installation is None:
                future.set_exception(
                    NotFoundError(
                        f"installation {installation_id} not found",
                        collection=self._stores.installations.path,
                        doc_id=installation_id,
                    )
                )
                return
            if not is_actionable(installation):
                future.set_result(installation)

        def _on_error(exc: Exception) -> None:
            if not future.done():
                future.set_exception(exc)

        registration = self._stores.installations.watch(installation_id, _on_change, _on_error)
        try:
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            return None
        finally:
            registration.remove()
            if not future.done():
                future.cancel()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check(
        self,
        current: Installation,
        target: InstallationStatus,
        action: str,
        expected_status: InstallationStatus | None,
    ) -> None:
        if expected_status is not None and current.status != expected_status:
            raise self._lost_race(current, action, expected_status)
        ok, message = self.can_transition(current, target)
        if not ok:
            raise InvalidTransitionError(
                f"Cannot {action} installation {current.id}: {message}",
                installation_id=current.id,
                action=action,
                current=current.status.value,
                expected=expected_status.value if expected_status else None,
            )

    @staticmethod
    def _lost_race(latest: Installation, action: str, expected: InstallationStatus) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"Cannot {action} installation {latest.id}: it is now {latest.status.value} (expected {expected.value})",
            installation_id=latest.id,
            action=action,
            current=latest.status.value,
            expected=expected.value,
        )

    async def _commit_flag(self, current: Installation, flagged_by: str, reason: str) -> Installation:
        now = self._clock()
        patch = {
            "status": InstallationStatus.FLAGGED.value,
            "flagged_reason": reason,
            "verified_by": flagged_by,
            "verified_at": now,
            "updated_at": now,
        }
        try:
            updated = await self._stores.installations.update_if(
                current.id, {"status": InstallationStatus.PENDING.value}, patch
            )
        except ConcurrentModification as exc:
            latest = await self._stores.installations.get_by_id(current.id)
            raise self._lost_race(latest, "flag", InstallationStatus.PENDING) from exc
        await self._mirror_device_status(updated.device_id, DeviceStatus.FLAGGED)
        return updated

    async def _mirror_device_status(self, device_id: str, status: DeviceStatus) -> None:
        """Copy the installation outcome onto the device (best effort).

        The two documents live in different collections and cannot be
        written atomically; a failure here is logged, not raised.
        """
        try:
            await self._stores.devices.update_status(device_id, status)
        except NotFoundError:
            _logger.warning("Device %s missing while mirroring status %s", device_id, status.value)
