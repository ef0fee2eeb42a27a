"""Feed telemetry readings into the installation state machine."""

from __future__ import annotations

import asyncio
import logging

from pyfieldinstall.enrichment.indices import latest_by_device
from pyfieldinstall.lifecycle.state_machine import InstallationStateMachine, TelemetryOutcome
from pyfieldinstall.lifecycle.variance import TelemetryVerdict
from pyfieldinstall.models.installation import Installation
from pyfieldinstall.models.telemetry import ServerData
from pyfieldinstall.store.adapters import InstallationStore
from pyfieldinstall.telemetry.client import TelemetryClient

_logger = logging.getLogger(__name__)


class TelemetryVerifier:
    """Runs the automated comparison for pulled and pushed readings."""

    def __init__(
        self,
        state_machine: InstallationStateMachine,
        installations: InstallationStore,
        client: TelemetryClient | None = None,
    ) -> None:
        self._state_machine = state_machine
        self._installations = installations
        self._client = client
        self._tasks: set[asyncio.Task[TelemetryOutcome | None]] = set()

    async def refresh(self, installation: Installation | str) -> TelemetryOutcome:
        """Pull the latest server reading for one installation and apply it."""
        if self._client is None:
            raise RuntimeError("TelemetryVerifier has no TelemetryClient")
        if isinstance(installation, str):
            installation = await self._installations.get_by_id(installation)
        reading = await self._client.fetch_latest(installation.device_id)
        outcome = await self._state_machine.apply_telemetry(installation.id, reading)
        if outcome.verdict != TelemetryVerdict.NO_DATA:
            _logger.debug(
                "Telemetry for %s: verdict=%s variance=%s",
                installation.id,
                outcome.verdict.value,
                outcome.variance_pct,
            )
        return outcome

    async def apply_reading(self, reading: ServerData) -> TelemetryOutcome | None:
        """Apply a pushed reading to the device's active installation.

        Returns ``None`` when the device has no installation yet.
        """
        candidates = await self._installations.query_by_equality("device_id", reading.device_id)
        active = latest_by_device(candidates).get(reading.device_id)
        if active is None:
            _logger.debug("Reading for %s has no installation", reading.device_id)
            return None
        return await self._state_machine.apply_telemetry(active.id, reading)

    def on_reading(self, reading: ServerData) -> None:
        """Event-loop callback for :class:`TelemetryMqttRuntime`."""
        task = asyncio.get_running_loop().create_task(self.apply_reading(reading))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[TelemetryOutcome | None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Applying pushed telemetry failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every pushed reading handed over so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
