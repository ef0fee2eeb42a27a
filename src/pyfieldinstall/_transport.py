"""HTTP transport for the telemetry service."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp

from pyfieldinstall._constants import USER_AGENT
from pyfieldinstall._redact import redact_for_log
from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import TelemetryTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the telemetry client.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, endpoint: str) -> Any:
        ...


class HttpTransport:
    """Authenticated JSON GETs against the telemetry service."""

    def __init__(
        self,
        config: FieldInstallConfig,
        http_session: aiohttp.ClientSession,
    ) -> None:
        self._config = config
        self._http = http_session

    def _headers(self) -> dict[str, str]:
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.telemetry_api_key:
            headers["X-API-KEY"] = self._config.telemetry_api_key
        return headers

    async def get_json(self, endpoint: str) -> Any:
        """GET ``endpoint`` and decode the JSON body.

        Raises
        ------
        TelemetryTransportError
            Non-200 status (``status_code`` set), connection failure or a
            body that is not JSON.
        """
        url = f"{self._config.telemetry_base_url.rstrip('/')}{endpoint}"
        headers = self._headers()
        timeout = aiohttp.ClientTimeout(total=self._config.telemetry_timeout)

        _logger.debug("GET %s headers=%s", url, redact_for_log(headers))

        try:
            async with self._http.get(url, headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise TelemetryTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except TelemetryTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TelemetryTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TelemetryTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        _logger.debug("Response from %s: %s", endpoint, redact_for_log(body))
        return body
