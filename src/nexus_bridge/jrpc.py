"""JSON-RPC style envelopes exchanged with the dashboard over the websocket.

Each websocket text frame carries exactly one envelope:

* request / notification: ``{"id", "jsonrpc": "2.0", "method", "params"}``
* response: ``{"id", "jsonrpc": "2.0", "result"}`` or ``{"id", "jsonrpc": "2.0", "error"}``

``setDeviceState`` flows client -> server and expects a response.
``showDeviceState`` flows server -> client as an unsolicited notification;
it has the request shape but the client never answers it.
"""

from __future__ import annotations

import json
import uuid
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from nexus_bridge.const import JSONRPC_VERSION
from nexus_bridge.devices import DeviceName
from nexus_bridge.exceptions import InvalidParamsError, ParseError, UnknownMethodError

__all__ = [
    "METHODS",
    "JrpcErrorResponse",
    "JrpcRequest",
    "JrpcResponse",
    "JrpcResultResponse",
    "Method",
    "SetDeviceStateParams",
    "SetDeviceStateRequest",
    "ShowDeviceStateParams",
    "ShowDeviceStateRequest",
    "dump_envelope",
    "make_error",
    "make_notification",
    "make_result",
    "new_message_id",
    "parse_message",
]


class Method(StrEnum):
    SET_DEVICE_STATE = "setDeviceState"
    SHOW_DEVICE_STATE = "showDeviceState"


METHODS: frozenset[str] = frozenset(Method)


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class _DeviceParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_name: DeviceName = Field(
        serialization_alias="deviceName",
        validation_alias=AliasChoices("deviceName", "deviceId"),
    )


class SetDeviceStateParams(_DeviceParams):
    # partial updates are fine, zigbee2mqtt merges them into the device state
    state: dict[str, Any]


class ShowDeviceStateParams(_DeviceParams):
    state: Any


class SetDeviceStateRequest(_Envelope):
    method: Literal["setDeviceState"]
    params: SetDeviceStateParams


class ShowDeviceStateRequest(_Envelope):
    method: Literal["showDeviceState"]
    params: ShowDeviceStateParams


class JrpcResultResponse(_Envelope):
    result: Any


class JrpcErrorResponse(_Envelope):
    error: str


JrpcRequest = Annotated[SetDeviceStateRequest | ShowDeviceStateRequest, Field(discriminator="method")]
JrpcResponse = JrpcResultResponse | JrpcErrorResponse

_request_adapter: TypeAdapter[SetDeviceStateRequest | ShowDeviceStateRequest] = TypeAdapter(JrpcRequest)


def new_message_id() -> str:
    return str(uuid.uuid4())


def parse_message(raw: str | bytes) -> SetDeviceStateRequest | ShowDeviceStateRequest | JrpcResponse:
    """Decode one websocket frame into a typed envelope.

    Raises:
        ParseError: not JSON, not an object, or not a recognisable envelope
        UnknownMethodError: ``method`` is not in the method catalog
        InvalidParamsError: known method whose params fail validation

    Every raised error carries ``request_id`` when a string ``id`` was present.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(str(exc)) from exc
    if not isinstance(data, dict):
        raise ParseError(f"expected a JSON object, got {type(data).__name__}")

    raw_id = data.get("id")
    request_id = raw_id if isinstance(raw_id, str) else None

    if "method" in data:
        method = data["method"]
        if not isinstance(method, str) or method not in METHODS:
            raise UnknownMethodError(method, request_id)
        try:
            return _request_adapter.validate_python(data)
        except ValidationError as exc:
            if all("params" in err["loc"] for err in exc.errors()):
                raise InvalidParamsError(_summarize(exc), request_id) from exc
            raise ParseError(_summarize(exc), request_id) from exc

    if "error" in data or "result" in data:
        model = JrpcErrorResponse if "error" in data else JrpcResultResponse
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ParseError(_summarize(exc), request_id) from exc

    raise ParseError("envelope has neither method nor result/error", request_id)


def _summarize(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors(include_url=False)
    )


def make_notification(device: DeviceName, state: object) -> ShowDeviceStateRequest:
    """Build a ``showDeviceState`` push with a fresh id."""
    return ShowDeviceStateRequest(
        id=new_message_id(),
        method="showDeviceState",
        params=ShowDeviceStateParams(device_name=device, state=state),
    )


def make_result(request_id: str, result: object = True) -> JrpcResultResponse:
    return JrpcResultResponse(id=request_id, result=result)


def make_error(request_id: str, message: str) -> JrpcErrorResponse:
    return JrpcErrorResponse(id=request_id, error=message)


def dump_envelope(envelope: BaseModel) -> str:
    """Serialize an envelope to one text frame, using wire field names."""
    return envelope.model_dump_json(by_alias=True)
