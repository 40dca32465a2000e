"""Nexus bridge: websocket <-> MQTT control channel for the home dashboard."""

__version__ = "0.1.0"
