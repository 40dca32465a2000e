"""FastAPI application: health routes and the dashboard websocket endpoint."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware

from nexus_bridge.const import MQTT_RECEIVER_TASK_NAME, NEXUS_VERSION, ZIGBEE_WS_PATH
from nexus_bridge.correlation import correlation_context
from nexus_bridge.exceptions import TransportError
from nexus_bridge.logging_abstraction import get_logger
from nexus_bridge.mqtt import MQTTTransport
from nexus_bridge.structs import NexusEnv
from nexus_bridge.utils import send_sigterm
from nexus_bridge.zigbee import ZigbeeController, ZigbeeSession

logger = get_logger(__name__)


def _on_receiver_done(task: asyncio.Task[None]) -> None:
    lp = "server:receiver:"
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, TransportError):
        # subscriptions do not survive a reconnect, let the supervisor restart us
        logger.critical("%s broker connection lost (%s), shutting down", lp, exc)
        send_sigterm()
    elif exc is not None:
        logger.error("%s receiver stopped unexpectedly: %r", lp, exc)
        send_sigterm()


@contextlib.asynccontextmanager
async def _broker_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Connect the shared MQTT transport unless a controller was injected."""
    lp = "server:lifespan:"
    if app.state.zigbee_controller is not None:
        yield
        return

    env: NexusEnv = app.state.env
    transport = MQTTTransport(env)
    # BrokerConnectionError propagates: no broker, no bridge
    await transport.connect()
    app.state.zigbee_controller = ZigbeeController(env.base_topic, transport)
    receiver = asyncio.create_task(transport.run_receiver(), name=MQTT_RECEIVER_TASK_NAME)
    receiver.add_done_callback(_on_receiver_done)
    logger.info("%s bridge ready", lp, extra={"base_topic": env.base_topic})
    try:
        yield
    finally:
        if not receiver.done():
            _ = receiver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await receiver
        await transport.disconnect()
        app.state.zigbee_controller = None
        logger.info("%s bridge stopped", lp)


def create_app(controller: ZigbeeController | None = None, env: NexusEnv | None = None) -> FastAPI:
    """Build the HTTP app.

    Args:
        controller: Pre-built controller (tests); when None the lifespan
            connects to the broker configured in ``env``
        env: Settings, defaults to the current environment

    """
    app = FastAPI(title="nexus-bridge", version=NEXUS_VERSION, lifespan=_broker_lifespan)
    app.state.env = env or NexusEnv.from_environ()
    app.state.zigbee_controller = controller

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def index() -> dict[str, Any]:
        return {"message": "Hello from nexus-bridge!", "version": NEXUS_VERSION}

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        zigbee: ZigbeeController | None = app.state.zigbee_controller
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "mqtt_connected": bool(zigbee and zigbee.transport.is_connected),
        }

    @app.websocket(ZIGBEE_WS_PATH)
    async def zigbee_ws(websocket: WebSocket) -> None:
        zigbee: ZigbeeController | None = websocket.app.state.zigbee_controller
        if zigbee is None:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return
        await websocket.accept()
        session = ZigbeeSession(zigbee, websocket.send_text)
        with correlation_context(session.session_id):
            logger.info("ws: client connected", extra={"client": str(websocket.client)})
            try:
                await session.open()
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
                    data = message.get("text")
                    if data is None:
                        data = message.get("bytes")
                    if data is not None:
                        session.receive(data)
            finally:
                await session.close()
                logger.info("ws: client disconnected")

    return app
