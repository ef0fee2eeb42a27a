"""Telemetry collaborators: HTTP pull, MQTT push and the verifier."""

from pyfieldinstall.telemetry.client import TelemetryClient, device_endpoint, parse_latest_record
from pyfieldinstall.telemetry.mqtt import (
    MqttSettings,
    TelemetryMqttRuntime,
    decode_telemetry_payload,
    device_id_from_topic,
)
from pyfieldinstall.telemetry.verifier import TelemetryVerifier

__all__ = [
    "MqttSettings",
    "TelemetryClient",
    "TelemetryMqttRuntime",
    "TelemetryVerifier",
    "decode_telemetry_payload",
    "device_endpoint",
    "device_id_from_topic",
    "parse_latest_record",
]
