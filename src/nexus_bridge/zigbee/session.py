"""Per-websocket session: device state pushes out, device commands in.

On open the session registers one listener per catalog device with the
shared controller. Each listener turns a state message into a
``showDeviceState`` notification. Inbound frames are parsed as envelopes and
``setDeviceState`` requests are forwarded to the controller and answered with
a correlated response. On close every listener is unregistered again.

Notifications come from broker dispatch and responses come from client
requests; both go through ``write_lock`` so frames never interleave.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum

from nexus_bridge.correlation import correlation_context, generate_correlation_id
from nexus_bridge.devices import ALL_DEVICE_NAMES, DeviceName
from nexus_bridge.exceptions import ProtocolError, TransportError
from nexus_bridge.jrpc import (
    JrpcErrorResponse,
    JrpcResultResponse,
    SetDeviceStateRequest,
    ShowDeviceStateRequest,
    dump_envelope,
    make_error,
    make_notification,
    make_result,
    parse_message,
)
from nexus_bridge.logging_abstraction import get_logger
from nexus_bridge.structs import SendText
from nexus_bridge.zigbee.controller import DeviceMessageListener, ZigbeeController

logger = get_logger(__name__)

UNKNOWN_METHOD = "unknown method"


class SessionState(StrEnum):
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ZigbeeSession:
    """Protocol handler for one dashboard websocket connection."""

    lp: str = "ws:"

    def __init__(self, controller: ZigbeeController, send: SendText) -> None:
        self.controller: ZigbeeController = controller
        self._send: SendText = send
        self.session_id: str = generate_correlation_id()
        self.state: SessionState = SessionState.OPENING
        self.write_lock: asyncio.Lock = asyncio.Lock()
        self.registrations: list[tuple[DeviceName, DeviceMessageListener]] = []
        self._write_tasks: set[asyncio.Task[None]] = set()
        self._request_tasks: set[asyncio.Task[None]] = set()

    async def open(self) -> None:
        """Register a notification listener for every catalog device."""
        lp = f"{self.lp}open:"
        with correlation_context(self.session_id):
            for device in ALL_DEVICE_NAMES:
                if self.state is not SessionState.OPENING:
                    break
                listener = self._make_listener(device)
                try:
                    await self.controller.subscribe_to_device(device, listener)
                except TransportError as exc:
                    logger.warning("%s could not subscribe to %s: %s", lp, device, exc)
                    continue
                if self.state is not SessionState.OPENING:
                    # closed while we were subscribing, close() has already run its teardown
                    try:
                        await self.controller.unsubscribe_from_device(device, listener)
                    except TransportError as exc:
                        logger.warning("%s unsubscribe from %s failed: %s", lp, device, exc)
                    break
                self.registrations.append((device, listener))
            if self.state is SessionState.OPENING:
                self.state = SessionState.OPEN
            logger.info(
                "%s session opened",
                lp,
                extra={"devices": len(self.registrations), "catalog": len(ALL_DEVICE_NAMES)},
            )

    def _make_listener(self, device: DeviceName) -> DeviceMessageListener:
        def listener(state: object) -> None:
            self._schedule_write(dump_envelope(make_notification(device, state)))

        return listener

    def _schedule_write(self, text: str) -> None:
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        task = asyncio.get_running_loop().create_task(self.write(text))
        self._write_tasks.add(task)
        task.add_done_callback(self._write_tasks.discard)

    async def write(self, text: str) -> None:
        """Send one complete envelope; frames are serialized by ``write_lock``."""
        async with self.write_lock:
            if self.state is SessionState.CLOSED:
                logger.debug("%s session closed, dropping frame", f"{self.lp}write:")
                return
            try:
                await self._send(text)
            except Exception as exc:
                # the connection is going away; close() will follow from the endpoint
                logger.warning("%s send failed: %s", f"{self.lp}write:", exc)

    def receive(self, raw: str | bytes) -> None:
        """Handle an inbound frame in its own task so requests may overlap."""
        if self.state is not SessionState.OPEN:
            logger.debug("%s session is %s, ignoring frame", f"{self.lp}receive:", self.state)
            return
        task = asyncio.get_running_loop().create_task(self.handle_message(raw))
        self._request_tasks.add(task)
        task.add_done_callback(self._request_tasks.discard)

    async def handle_message(self, raw: str | bytes) -> None:
        lp = f"{self.lp}message:"
        try:
            message = parse_message(raw)
        except ProtocolError as exc:
            if exc.request_id is None:
                logger.warning("%s dropping malformed frame without id: %s", lp, exc)
                return
            logger.warning("%s rejecting request %s: %s", lp, exc.request_id, exc)
            await self.write(dump_envelope(make_error(exc.request_id, exc.message)))
            return

        match message:
            case SetDeviceStateRequest():
                with correlation_context(message.id):
                    await self._handle_set_device_state(message)
            case JrpcResultResponse() | JrpcErrorResponse():
                # the server issues no requests of its own yet
                logger.debug("%s ignoring response envelope %s", lp, message.id)
            case ShowDeviceStateRequest():
                logger.warning("%s client sent server-only method %s", lp, message.method)
                await self.write(dump_envelope(make_error(message.id, UNKNOWN_METHOD)))

    async def _handle_set_device_state(self, request: SetDeviceStateRequest) -> None:
        lp = f"{self.lp}setDeviceState:"
        device = request.params.device_name
        try:
            await self.controller.set_device_state(device, request.params.state)
        except TransportError as exc:
            logger.warning("%s publish for %s failed: %s", lp, device, exc)
            await self.write(dump_envelope(make_error(request.id, f"broker unavailable: {exc.reason}")))
            return
        await self.write(dump_envelope(make_result(request.id, True)))

    async def flush(self) -> None:
        """Wait for in-flight requests and queued writes to finish."""
        while self._request_tasks or self._write_tasks:
            _ = await asyncio.gather(*self._request_tasks, *self._write_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Unregister every listener this session registered. Safe to call twice."""
        lp = f"{self.lp}close:"
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self.state = SessionState.CLOSING
        with correlation_context(self.session_id):
            for task in list(self._request_tasks):
                _ = task.cancel()
            for device, listener in self.registrations:
                try:
                    await self.controller.unsubscribe_from_device(device, listener)
                except TransportError as exc:
                    logger.warning("%s unsubscribe from %s failed: %s", lp, device, exc)
            count = len(self.registrations)
            self.registrations.clear()
            self.state = SessionState.CLOSED
            logger.info("%s session closed", lp, extra={"devices": count})
