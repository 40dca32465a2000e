"""Zigbee device control over MQTT, exposed to the dashboard via websocket."""

from .controller import DeviceMessageListener, ZigbeeController
from .session import SessionState, ZigbeeSession

__all__ = [
    "DeviceMessageListener",
    "SessionState",
    "ZigbeeController",
    "ZigbeeSession",
]
