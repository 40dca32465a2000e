"""MQTT transport package for the Nexus bridge."""

from .transport import MQTTTransport

__all__ = [
    "MQTTTransport",
]
