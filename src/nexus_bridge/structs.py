"""Runtime settings and typing protocols for the Nexus bridge."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable
from typing import Protocol

from pydantic import BaseModel

from nexus_bridge.const import (
    NEXUS_BASE_TOPIC,
    NEXUS_DEBUG,
    NEXUS_LOG_FORMAT,
    NEXUS_LOG_HUMAN_OUTPUT,
    NEXUS_LOG_JSON_FILE,
    NEXUS_MQTT_CLIENT_ID,
    NEXUS_MQTT_HOST,
    NEXUS_MQTT_PASS,
    NEXUS_MQTT_PORT,
    NEXUS_MQTT_QOS,
    NEXUS_MQTT_USER,
    NEXUS_SRV_HOST,
    NEXUS_SRV_PORT,
    YES_ANSWER,
)

__all__ = [
    "MessageHandler",
    "NexusEnv",
    "SendText",
    "TransportProtocol",
]

# (topic, raw payload) delivered for every inbound broker message
MessageHandler = Callable[[str, bytes], None]
# writes one complete text frame to a client connection
SendText = Callable[[str], Awaitable[None]]


class TransportProtocol(Protocol):
    """Structural type of the broker transport consumed by the controller."""

    @property
    def is_connected(self) -> bool:
        """Whether the broker connection is currently up."""
        ...

    async def publish(self, topic: str, payload: bytes) -> None:
        """Publish a payload, returning once the broker accepted it."""
        ...

    async def subscribe(self, topic: str) -> None:
        """Register interest in a topic at the broker."""
        ...

    async def unsubscribe(self, topic: str) -> None:
        """Drop interest in a topic at the broker."""
        ...

    def on_message(self, handler: MessageHandler) -> None:
        """Install the single process-wide inbound message handler."""
        ...


class NexusEnv(BaseModel):
    """Environment-derived settings.

    Module constants in ``const`` are evaluated at import time; this model is
    rebuilt after a dotenv file has been loaded so late overrides are honoured.
    """

    mqtt_host: str = NEXUS_MQTT_HOST
    mqtt_port: int = NEXUS_MQTT_PORT
    mqtt_user: str | None = NEXUS_MQTT_USER
    mqtt_pass: str | None = NEXUS_MQTT_PASS
    mqtt_client_id: str = NEXUS_MQTT_CLIENT_ID
    mqtt_qos: int = NEXUS_MQTT_QOS
    base_topic: str = NEXUS_BASE_TOPIC
    srv_host: str = NEXUS_SRV_HOST
    srv_port: int = NEXUS_SRV_PORT
    debug: bool = NEXUS_DEBUG
    log_format: str = NEXUS_LOG_FORMAT
    log_json_file: str | None = NEXUS_LOG_JSON_FILE
    log_human_output: str = NEXUS_LOG_HUMAN_OUTPUT

    @classmethod
    def from_environ(cls) -> NexusEnv:
        """Re-evaluate environment variables, falling back to import-time defaults."""
        defaults = cls()
        port = os.environ.get("NEXUS_MQTT_PORT", "")
        srv_port = os.environ.get("NEXUS_SRV_PORT", "")
        qos = os.environ.get("NEXUS_MQTT_QOS", "")
        base_topic = os.environ.get("NEXUS_BASE_TOPIC", "").strip("/")
        debug = os.environ.get("NEXUS_DEBUG", "")
        log_format = os.environ.get("NEXUS_LOG_FORMAT", "")
        return cls(
            mqtt_host=os.environ.get("NEXUS_MQTT_HOST") or defaults.mqtt_host,
            mqtt_port=int(port) if port.isdigit() else defaults.mqtt_port,
            mqtt_user=os.environ.get("NEXUS_MQTT_USER") or defaults.mqtt_user,
            mqtt_pass=os.environ.get("NEXUS_MQTT_PASS") or defaults.mqtt_pass,
            mqtt_client_id=os.environ.get("NEXUS_MQTT_CLIENT_ID") or defaults.mqtt_client_id,
            mqtt_qos=int(qos) if qos in ("0", "1", "2") else defaults.mqtt_qos,
            base_topic=base_topic or defaults.base_topic,
            srv_host=os.environ.get("NEXUS_SRV_HOST") or defaults.srv_host,
            srv_port=int(srv_port) if srv_port.isdigit() else defaults.srv_port,
            debug=debug.casefold() in YES_ANSWER if debug else defaults.debug,
            log_format=log_format if log_format in ("json", "human", "both") else defaults.log_format,
            log_json_file=os.environ.get("NEXUS_LOG_JSON_FILE") or defaults.log_json_file,
            log_human_output=os.environ.get("NEXUS_LOG_HUMAN_OUTPUT") or defaults.log_human_output,
        )
