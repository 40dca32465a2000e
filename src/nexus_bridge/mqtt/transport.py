"""MQTT transport: the one broker connection shared by the whole process.

Wraps ``aiomqtt.Client`` behind publish/subscribe/unsubscribe calls that
raise ``TransportError`` instead of swallowing failures, and a single
process-wide inbound message handler fed by ``run_receiver()``.
"""

from __future__ import annotations

import asyncio

import aiomqtt

from nexus_bridge.exceptions import BrokerConnectionError, TransportError
from nexus_bridge.instrumentation import timed_async
from nexus_bridge.logging_abstraction import get_logger
from nexus_bridge.structs import MessageHandler, NexusEnv

logger = get_logger(__name__)


class MQTTTransport:
    """Single aiomqtt connection with a callback-style inbound message hook."""

    lp: str = "mqtt:"

    def __init__(self, env: NexusEnv) -> None:
        self.env: NexusEnv = env
        self.broker_host: str = env.mqtt_host
        self.broker_port: int = env.mqtt_port
        self.qos: int = env.mqtt_qos
        self.client: aiomqtt.Client | None = None
        self._connected: bool = False
        self._handler: MessageHandler | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def on_message(self, handler: MessageHandler) -> None:
        if self._handler is not None and self._handler is not handler:
            logger.warning("%s replacing existing message handler", f"{self.lp}on_message:")
        self._handler = handler

    async def connect(self) -> None:
        """Open the broker connection.

        Raises:
            BrokerConnectionError: network or authentication failure

        """
        lp = f"{self.lp}connect:"
        logger.debug(
            "%s Connecting to MQTT broker...",
            lp,
            extra={"host": self.broker_host, "port": self.broker_port, "client_id": self.env.mqtt_client_id},
        )
        self.client = aiomqtt.Client(
            hostname=self.broker_host,
            port=self.broker_port,
            username=self.env.mqtt_user,
            password=self.env.mqtt_pass,
            identifier=self.env.mqtt_client_id,
        )
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            # [code:134] Bad user name or password, [code:135] Not authorized
            if "code:134" in str(mqtt_err_exc) or "code:135" in str(mqtt_err_exc):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.env.mqtt_user,
                )
            else:
                logger.error("%s Connection failed [MqttError] -> %s", lp, mqtt_err_exc)
            self.client = None
            raise BrokerConnectionError(str(mqtt_err_exc), self.broker_host, self.broker_port) from mqtt_err_exc

        self._connected = True
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.broker_host, self.broker_port)

    async def disconnect(self) -> None:
        lp = f"{self.lp}disconnect:"
        if self.client is None:
            return
        try:
            logger.debug("%s Disconnecting from broker...", lp)
            await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            logger.warning("%s MQTT disconnect failed: %s", lp, ce)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            self._connected = False
            self.client = None

    def _require_client(self, operation: str, topic: str) -> aiomqtt.Client:
        if not self._connected or self.client is None:
            raise TransportError(operation, "not connected", topic)
        return self.client

    @timed_async("mqtt_publish")
    async def publish(self, topic: str, payload: bytes) -> None:
        client = self._require_client("publish", topic)
        try:
            await client.publish(topic, payload, qos=self.qos, retain=False)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", f"{self.lp}publish:", mqtt_err, extra={"topic": topic})
            raise TransportError("publish", str(mqtt_err), topic) from mqtt_err

    async def subscribe(self, topic: str) -> None:
        client = self._require_client("subscribe", topic)
        try:
            await client.subscribe(topic, qos=self.qos)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", f"{self.lp}subscribe:", mqtt_err, extra={"topic": topic})
            raise TransportError("subscribe", str(mqtt_err), topic) from mqtt_err
        logger.debug("%s Subscribed to %s", f"{self.lp}subscribe:", topic)

    async def unsubscribe(self, topic: str) -> None:
        client = self._require_client("unsubscribe", topic)
        try:
            await client.unsubscribe(topic)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", f"{self.lp}unsubscribe:", mqtt_err, extra={"topic": topic})
            raise TransportError("unsubscribe", str(mqtt_err), topic) from mqtt_err
        logger.debug("%s Unsubscribed from %s", f"{self.lp}unsubscribe:", topic)

    async def run_receiver(self) -> None:
        """Feed every inbound message to the registered handler until the connection drops.

        Raises:
            TransportError: the broker connection was lost

        """
        rcv_lp = f"{self.lp}rcv:"
        client = self._require_client("receive", "#")
        logger.info("%s Starting MQTT receiver...", rcv_lp)
        try:
            async for message in client.messages:
                payload = message.payload
                if not payload:
                    logger.debug("%s Empty payload for topic: %s, skipping...", rcv_lp, message.topic.value)
                    continue
                if isinstance(payload, str):
                    payload = payload.encode()
                elif not isinstance(payload, (bytes, bytearray)):
                    payload = str(payload).encode()
                self._deliver(message.topic.value, bytes(payload))
        except asyncio.CancelledError:
            logger.debug("%s MQTT receiver task cancelled, propagating...", rcv_lp)
            raise
        except aiomqtt.MqttError as msg_err:
            self._connected = False
            logger.error("%s MQTT connection lost: %s", rcv_lp, msg_err)
            raise TransportError("receive", str(msg_err)) from msg_err

    def _deliver(self, topic: str, payload: bytes) -> None:
        if self._handler is None:
            logger.debug("%s No handler registered, dropping message on %s", f"{self.lp}rcv:", topic)
            return
        try:
            self._handler(topic, payload)
        except Exception:
            logger.exception("%s Message handler raised for topic %s", f"{self.lp}rcv:", topic)
