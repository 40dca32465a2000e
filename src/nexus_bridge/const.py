import os
import uuid

from nexus_bridge import __version__

__all__ = [
    "JSONRPC_VERSION",
    "MQTT_RECEIVER_TASK_NAME",
    "NEXUS_BASE_TOPIC",
    "NEXUS_DEBUG",
    "NEXUS_LOG_FORMAT",
    "NEXUS_LOG_HUMAN_OUTPUT",
    "NEXUS_LOG_JSON_FILE",
    "NEXUS_MQTT_CLIENT_ID",
    "NEXUS_MQTT_HOST",
    "NEXUS_MQTT_PASS",
    "NEXUS_MQTT_PORT",
    "NEXUS_MQTT_QOS",
    "NEXUS_MQTT_USER",
    "NEXUS_PERF_THRESHOLD_MS",
    "NEXUS_PERF_TRACKING",
    "NEXUS_SRV_HOST",
    "NEXUS_SRV_PORT",
    "NEXUS_VERSION",
    "STATE_REQUEST_PAYLOAD",
    "YES_ANSWER",
    "ZIGBEE_WS_PATH",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
NEXUS_VERSION: str = __version__
JSONRPC_VERSION = "2.0"
# body of a <namespace>/<device>/get request, asks the device to report its state
STATE_REQUEST_PAYLOAD: dict[str, dict[str, object]] = {"state": {}}
ZIGBEE_WS_PATH = "/api/zigbee"
MQTT_RECEIVER_TASK_NAME = "MQTTTransport_RECEIVER"

NEXUS_MQTT_HOST: str = os.environ.get("NEXUS_MQTT_HOST", "localhost")
_mqtt_port = os.environ.get("NEXUS_MQTT_PORT", "1883")
try:
    _mqtt_port_value: int = int(_mqtt_port) if _mqtt_port else 1883
except ValueError:
    _mqtt_port_value = 1883
NEXUS_MQTT_PORT: int = _mqtt_port_value
_mqtt_user = os.environ.get("NEXUS_MQTT_USER")
NEXUS_MQTT_USER: str | None = _mqtt_user if _mqtt_user else None
_mqtt_pass = os.environ.get("NEXUS_MQTT_PASS")
NEXUS_MQTT_PASS: str | None = _mqtt_pass if _mqtt_pass else None
NEXUS_MQTT_CLIENT_ID: str = os.environ.get("NEXUS_MQTT_CLIENT_ID") or f"nexus_bridge_{uuid.uuid4().hex[:8]}"
_mqtt_qos = os.environ.get("NEXUS_MQTT_QOS", "0")
NEXUS_MQTT_QOS: int = int(_mqtt_qos) if _mqtt_qos in ("0", "1", "2") else 0
_base_topic = os.environ.get("NEXUS_BASE_TOPIC", "nexus").strip("/")
NEXUS_BASE_TOPIC: str = _base_topic if _base_topic else "nexus"

NEXUS_SRV_HOST: str = os.environ.get("NEXUS_SRV_HOST", "0.0.0.0")
_srv_port = os.environ.get("NEXUS_SRV_PORT", "8000")
NEXUS_SRV_PORT: int = int(_srv_port) if _srv_port and _srv_port.isdigit() else 8000

NEXUS_DEBUG = os.environ.get("NEXUS_DEBUG", "0").casefold() in YES_ANSWER

# Logging Configuration
NEXUS_LOG_FORMAT: str = os.environ.get("NEXUS_LOG_FORMAT", "human")  # "json", "human", or "both"
NEXUS_LOG_JSON_FILE: str | None = os.environ.get("NEXUS_LOG_JSON_FILE") or None
NEXUS_LOG_HUMAN_OUTPUT: str = os.environ.get("NEXUS_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
NEXUS_PERF_TRACKING: bool = os.environ.get("NEXUS_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("NEXUS_PERF_THRESHOLD_MS", "100")
NEXUS_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 100
