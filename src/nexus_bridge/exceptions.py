"""Exception hierarchy for the Nexus bridge.

Transport errors come from the broker side and propagate out of controller
operations to whoever triggered them. Protocol errors come from the client
side and are turned into error envelopes by the websocket session.
"""

from __future__ import annotations

__all__ = [
    "BrokerConnectionError",
    "InvalidParamsError",
    "NexusError",
    "ParseError",
    "ProtocolError",
    "TransportError",
    "UnknownMethodError",
]


class NexusError(Exception):
    """Base class for all bridge errors."""


class TransportError(NexusError):
    """A broker operation failed or was attempted while disconnected.

    Attributes:
        operation: "publish", "subscribe", "unsubscribe", "receive" or "connect"
        topic: Topic involved, if any
        reason: Underlying failure description

    """

    def __init__(self, operation: str, reason: str, topic: str | None = None) -> None:
        self.operation: str = operation
        self.reason: str = reason
        self.topic: str | None = topic
        where = f" on {topic}" if topic else ""
        super().__init__(f"MQTT {operation} failed{where}: {reason}")


class BrokerConnectionError(TransportError):
    """The broker connection could not be established. Fatal at startup."""

    def __init__(self, reason: str, host: str | None = None, port: int | None = None) -> None:
        self.host: str | None = host
        self.port: int | None = port
        super().__init__("connect", f"{reason} (broker: {host}:{port})")


class ProtocolError(NexusError):
    """A client message could not be turned into a dispatchable request.

    Attributes:
        request_id: Envelope id when one could be recovered, else None
        message: Short error string sent back in the error envelope

    """

    message: str = "protocol error"

    def __init__(self, detail: str = "", request_id: str | None = None) -> None:
        self.request_id: str | None = request_id
        self.detail: str = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class ParseError(ProtocolError):
    message = "parse error"


class UnknownMethodError(ProtocolError):
    message = "unknown method"

    def __init__(self, method: object, request_id: str | None = None) -> None:
        self.method: object = method
        super().__init__(repr(method), request_id)


class InvalidParamsError(ProtocolError):
    message = "invalid params"
