"""Pull the latest reading for a device from the telemetry HTTP service."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pyfieldinstall._transport import Transport
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import TelemetryTransportError
from pyfieldinstall.models.telemetry import ServerData

_logger = logging.getLogger(__name__)


def device_endpoint(device_id: str, suffix_length: int = 4) -> str:
    """Path addressing a device by the upper-cased tail of its id."""
    suffix = device_id.strip()[-suffix_length:].upper()
    if not suffix:
        raise ValueError("device_id must be non-empty")
    return f"/device/{suffix}"


def parse_latest_record(device_id: str, body: Any) -> ServerData | None:
    """Pick ``records[0]`` out of a telemetry response.

    Returns ``None`` when there are no records or the newest one carries
    no positive ``dis_cm``.
    """
    if not isinstance(body, dict):
        return None
    records = body.get("records")
    if not isinstance(records, list) or not records or not isinstance(records[0], dict):
        return None
    try:
        reading = ServerData.model_validate({**records[0], "deviceId": device_id})
    except ValidationError:
        _logger.debug("Unparseable telemetry record for %s", device_id, exc_info=True)
        return None
    return reading if reading.has_reading else None


class TelemetryClient:
    def __init__(self, transport: Transport, config: FieldInstallConfig | None = None) -> None:
        self._transport = transport
        self._config = config or FieldInstallConfig()

    async def fetch_latest(self, device_id: str) -> ServerData | None:
        """Latest server reading for ``device_id``.

        ``None`` means the backend has no data for the device yet (HTTP
        404, no records, or a zero reading). Other failures raise
        :class:`TelemetryTransportError`.
        """
        endpoint = device_endpoint(device_id, self._config.device_suffix_length)
        try:
            body = await self._transport.get_json(endpoint)
        except TelemetryTransportError as exc:
            if exc.status_code == 404:
                _logger.debug("No telemetry yet for %s", device_id)
                return None
            raise
        return parse_latest_record(device_id, body)
