"""Library configuration for pyfieldinstall."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyfieldinstall._constants import TELEMETRY_BASE_URL
from pyfieldinstall.exceptions import FieldInstallConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class FieldInstallConfig:
    """Library configuration.

    Parameters
    ----------
    telemetry_base_url : str
        Base URL of the telemetry HTTP service.
    telemetry_api_key : str
        Value sent as ``X-API-KEY`` to the telemetry service.
    telemetry_timeout : float
        Total HTTP timeout in seconds for a telemetry request.
    device_suffix_length : int
        Number of trailing device-id characters the telemetry service
        uses to address a device.
    pre_verify_threshold_pct : float
        Variance (percent) strictly below which an installation is
        system pre-verified.
    auto_reject_threshold_pct : float
        Variance (percent) strictly above which an installation is
        auto-rejected by the system.
    error_log_cap : int
        Maximum number of per-row diagnostics kept by bulk operations.
    max_image_urls : int
        Maximum number of photos attached to an installation.
    mqtt_enabled : bool
        Enable the MQTT telemetry listener.
    mqtt_host : str
        Telemetry broker host.
    mqtt_port : int
        Telemetry broker port.
    mqtt_topic : str
        Topic filter carrying telemetry readings.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    """

    telemetry_base_url: str = TELEMETRY_BASE_URL
    telemetry_api_key: str = ""
    telemetry_timeout: float = 10.0
    device_suffix_length: int = 4
    pre_verify_threshold_pct: float = 5.0
    auto_reject_threshold_pct: float = 10.0
    error_log_cap: int = 20
    max_image_urls: int = 4
    mqtt_enabled: bool = False
    mqtt_host: str = ""
    mqtt_port: int = 8883
    mqtt_topic: str = "telemetry/+/reading"
    mqtt_keepalive: int = 120

    def __post_init__(self) -> None:
        if self.pre_verify_threshold_pct < 0:
            raise FieldInstallConfigError("pre_verify_threshold_pct must be >= 0")
        if self.auto_reject_threshold_pct < self.pre_verify_threshold_pct:
            raise FieldInstallConfigError(
                "auto_reject_threshold_pct must be >= pre_verify_threshold_pct "
                f"({self.auto_reject_threshold_pct} < {self.pre_verify_threshold_pct})"
            )
        if self.error_log_cap < 0:
            raise FieldInstallConfigError("error_log_cap must be >= 0")
        if self.device_suffix_length <= 0:
            raise FieldInstallConfigError("device_suffix_length must be > 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> FieldInstallConfig:
        """Create configuration from environment variables.

        Reads optional ``FIELDINSTALL_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        FieldInstallConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "FIELDINSTALL_TELEMETRY_BASE_URL": "telemetry_base_url",
            "FIELDINSTALL_TELEMETRY_API_KEY": "telemetry_api_key",
            "FIELDINSTALL_MQTT_HOST": "mqtt_host",
            "FIELDINSTALL_MQTT_TOPIC": "mqtt_topic",
        }
        _ENV_FLOAT_MAP = {
            "FIELDINSTALL_TELEMETRY_TIMEOUT": "telemetry_timeout",
            "FIELDINSTALL_PRE_VERIFY_THRESHOLD_PCT": "pre_verify_threshold_pct",
            "FIELDINSTALL_AUTO_REJECT_THRESHOLD_PCT": "auto_reject_threshold_pct",
        }
        _ENV_INT_MAP = {
            "FIELDINSTALL_DEVICE_SUFFIX_LENGTH": "device_suffix_length",
            "FIELDINSTALL_ERROR_LOG_CAP": "error_log_cap",
            "FIELDINSTALL_MAX_IMAGE_URLS": "max_image_urls",
            "FIELDINSTALL_MQTT_PORT": "mqtt_port",
            "FIELDINSTALL_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise FieldInstallConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("FIELDINSTALL_MQTT_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
