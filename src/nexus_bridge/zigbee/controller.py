"""Zigbee device controller: fans broker state messages out to listeners.

Topics, under the namespace ``ns``:

* ``ns/<device>``      device state, broker -> bridge
* ``ns/<device>/get``  state snapshot request, bridge -> broker
* ``ns/<device>/set``  state change command, bridge -> broker

One controller exists per process and is shared by every websocket session.
It owns the only broker subscription per device; sessions register plain
callables against it.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

from nexus_bridge.const import STATE_REQUEST_PAYLOAD
from nexus_bridge.devices import DeviceName, is_known_device, state_matches_shape
from nexus_bridge.logging_abstraction import get_logger
from nexus_bridge.structs import TransportProtocol

logger = get_logger(__name__)

DeviceMessageListener = Callable[[object], None]


class ZigbeeController:
    """Listener registry keyed by device, backed by one shared MQTT transport."""

    lp: str = "zigbee:"

    def __init__(self, base_topic: str, transport: TransportProtocol) -> None:
        self.base_topic: str = base_topic
        self.transport: TransportProtocol = transport
        self._listeners: dict[DeviceName, list[DeviceMessageListener]] = {}
        self._broker_subscribed: set[DeviceName] = set()
        self._pending_subscribes: dict[DeviceName, asyncio.Future[None]] = {}
        self.transport.on_message(self.handle_message)

    def state_topic(self, device: DeviceName) -> str:
        return f"{self.base_topic}/{device}"

    def get_topic(self, device: DeviceName) -> str:
        return f"{self.base_topic}/{device}/get"

    def set_topic(self, device: DeviceName) -> str:
        return f"{self.base_topic}/{device}/set"

    @property
    def subscribed_devices(self) -> tuple[DeviceName, ...]:
        return tuple(self._listeners)

    def listener_count(self, device: DeviceName) -> int:
        return len(self._listeners.get(device, ()))

    async def subscribe_to_device(self, device: DeviceName, listener: DeviceMessageListener) -> None:
        """Register ``listener`` for ``device`` and ask the device for its current state.

        The listener is in place before anything is awaited, so no state message
        delivered after the broker subscription is active can miss it. The broker
        topic is subscribed once per device; a registrant that arrives while that
        subscription is in flight waits for it and, if it failed, tries again.

        Raises:
            TransportError: the get request or the subscription failed; the
                listener is not left registered.

        """
        lp = f"{self.lp}subscribe:"
        listeners = self._listeners.setdefault(device, [])
        listeners.append(listener)
        try:
            await self.transport.publish(self.get_topic(device), json.dumps(STATE_REQUEST_PAYLOAD).encode())
            await self._ensure_broker_subscription(device)
        except BaseException:
            logger.warning("%s rolling back listener for %s after broker failure", lp, device)
            self._remove(device, listener)
            raise
        logger.debug(
            "%s listener registered",
            lp,
            extra={"device": str(device), "listeners": self.listener_count(device)},
        )

    async def _ensure_broker_subscription(self, device: DeviceName) -> None:
        while device not in self._broker_subscribed:
            in_flight = self._pending_subscribes.get(device)
            if in_flight is not None:
                _ = await asyncio.shield(in_flight)
                continue
            done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._pending_subscribes[device] = done
            try:
                await self.transport.subscribe(self.state_topic(device))
                self._broker_subscribed.add(device)
            finally:
                del self._pending_subscribes[device]
                done.set_result(None)

    async def unsubscribe_from_device(self, device: DeviceName, listener: DeviceMessageListener) -> None:
        """Remove ``listener``; drop the broker subscription once no listener is left.

        Raises:
            TransportError: the broker unsubscribe failed. Local bookkeeping is
                already updated when this is raised.

        """
        lp = f"{self.lp}unsubscribe:"
        removed, now_empty = self._remove(device, listener)
        if not removed:
            logger.debug("%s listener for %s was not registered, ignoring", lp, device)
            return
        broker_unsubscribe = now_empty and device in self._broker_subscribed
        logger.debug(
            "%s listener removed",
            lp,
            extra={
                "device": str(device),
                "listeners": self.listener_count(device),
                "broker_unsubscribe": broker_unsubscribe,
            },
        )
        if broker_unsubscribe:
            self._broker_subscribed.discard(device)
            await self.transport.unsubscribe(self.state_topic(device))

    def _remove(self, device: DeviceName, listener: DeviceMessageListener) -> tuple[bool, bool]:
        listeners = self._listeners.get(device)
        if not listeners:
            return False, False
        for idx, registered in enumerate(listeners):
            if registered is listener:
                del listeners[idx]
                break
        else:
            return False, False
        if not listeners:
            del self._listeners[device]
            return True, True
        return True, False

    async def set_device_state(self, device: DeviceName, state: object) -> None:
        """Publish a state change command. The device confirms later on its state topic."""
        logger.info("%s %s <- %s", f"{self.lp}set:", device, state)
        await self.transport.publish(self.set_topic(device), json.dumps(state).encode())

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Demultiplex one inbound broker message to the device's listeners."""
        lp = f"{self.lp}rcv:"
        prefix = f"{self.base_topic}/"
        if not topic.startswith(prefix):
            return
        name = topic[len(prefix) :]
        if "/" in name or not is_known_device(name):
            return
        device = DeviceName(name)
        listeners = self._listeners.get(device)
        if not listeners:
            return

        try:
            state = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("%s dropping undecodable payload on %s: %r", lp, topic, payload[:64])
            return

        if not state_matches_shape(device, state):
            logger.debug("%s state for %s does not match its catalog shape, forwarding anyway", lp, device)

        # snapshot, a listener may unsubscribe while we iterate
        for listener in list(listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("%s listener for %s raised", lp, device)
