"""Pushed telemetry over MQTT."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from pyfieldinstall.config import FieldInstallConfig
from pyfieldinstall.exceptions import FieldInstallConfigError
from pyfieldinstall.models.telemetry import ServerData


@dataclass(frozen=True)
class MqttSettings:
    """Broker connection details."""

    host: str
    port: int
    topic: str
    client_id: str = ""
    username: str | None = None
    password: str | None = None
    tls: bool = True
    keepalive: int = 120

    @classmethod
    def from_config(cls, config: FieldInstallConfig, **overrides: Any) -> MqttSettings:
        if not config.mqtt_enabled:
            raise FieldInstallConfigError("MQTT telemetry is disabled (FIELDINSTALL_MQTT_ENABLED)")
        if not config.mqtt_host:
            raise FieldInstallConfigError("mqtt_host is required when MQTT is enabled")
        values: dict[str, Any] = {
            "host": config.mqtt_host,
            "port": config.mqtt_port,
            "topic": config.mqtt_topic,
            "tls": config.mqtt_port == 8883,
            "keepalive": config.mqtt_keepalive,
        }
        values.update(overrides)
        return cls(**values)


def device_id_from_topic(topic: str, topic_filter: str) -> str | None:
    """Value matched by the first ``+`` wildcard of ``topic_filter``.

    ``None`` unless the whole topic matches the filter.
    """
    levels = topic.split("/")
    pattern = topic_filter.split("/")
    if len(levels) != len(pattern) and "#" not in pattern:
        return None
    captured: str | None = None
    wildcard_seen = False
    for index, expected in enumerate(pattern):
        if expected == "#":
            return captured
        if index >= len(levels):
            return None
        level = levels[index]
        if expected == "+":
            if not wildcard_seen:
                wildcard_seen = True
                captured = level or None
        elif level != expected:
            return None
    if len(levels) != len(pattern):
        return None
    return captured


def decode_telemetry_payload(payload: bytes, *, topic: str = "", topic_filter: str = "") -> ServerData:
    """Parse a JSON reading.

    The device id comes from the payload when present, else from the topic.

    Raises
    ------
    ValueError
        Payload is not a JSON object or names no device.
    """
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("telemetry payload is not a JSON object")
    if not any(parsed.get(key) for key in ("deviceId", "device_id", "id")):
        device_id = device_id_from_topic(topic, topic_filter) if topic_filter else None
        if device_id is None:
            raise ValueError(f"telemetry payload on {topic!r} names no device")
        parsed["deviceId"] = device_id
    try:
        return ServerData.model_validate(parsed)
    except ValidationError as exc:
        raise ValueError(f"invalid telemetry payload: {exc.error_count()} error(s)") from exc


class TelemetryMqttRuntime:
    """Threaded paho-mqtt runtime that emits readings onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_reading: Callable[[ServerData], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_reading = on_reading
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Decode one message and hand the reading to the event loop (any thread)."""
        try:
            reading = decode_telemetry_payload(payload, topic=topic, topic_filter=self._topic or "")
        except ValueError:
            self._logger.debug("MQTT payload parse failure topic=%s", topic, exc_info=True)
            return
        self._logger.debug("Telemetry reading device=%s value=%s", reading.device_id, reading.sensor_data)
        self._loop.call_soon_threadsafe(self._on_reading, reading)

    def start(self, settings: MqttSettings) -> None:
        """Connect and subscribe with the provided broker details."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s",
            settings.host,
            settings.port,
            settings.topic,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        self._topic = settings.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            if self._topic:
                c.subscribe(self._topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self.handle_message(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True

    def stop(self) -> None:
        """Stop and disconnect the MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
