"""Static catalog of the Zigbee devices the bridge controls.

The set of devices is closed; nothing is discovered at runtime. Each device
has a pydantic model describing the state it reports on its MQTT topic. The
models are advisory: payloads are forwarded to clients unchanged whether or
not they match.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

__all__ = [
    "ALL_DEVICE_NAMES",
    "DEVICE_STATE_MODELS",
    "DeskLampState",
    "DeviceName",
    "LivingRoomFloorLampState",
    "is_known_device",
    "state_matches_shape",
]

OnOff = Literal["ON", "OFF"]


class DeviceName(StrEnum):
    DESK_LAMP = "desk_lamp"
    LIVING_ROOM_FLOOR_LAMP = "living_room_floor_lamp"


class _DeviceState(BaseModel):
    # zigbee2mqtt adds fields per firmware revision; never reject on extras
    model_config = ConfigDict(extra="allow")


class DeskLampState(_DeviceState):
    state: OnOff
    brightness: int


class LevelConfig(_DeviceState):
    on_level: Literal["previous"] | int


class FirmwareUpdate(_DeviceState):
    installed_version: int
    latest_version: int
    state: Literal["available", "idle"]


class LivingRoomFloorLampState(_DeviceState):
    brightness: int
    level_config: LevelConfig
    linkquality: int
    state: OnOff
    update: FirmwareUpdate


DEVICE_STATE_MODELS: dict[DeviceName, type[_DeviceState]] = {
    DeviceName.DESK_LAMP: DeskLampState,
    DeviceName.LIVING_ROOM_FLOOR_LAMP: LivingRoomFloorLampState,
}

ALL_DEVICE_NAMES: tuple[DeviceName, ...] = tuple(DeviceName)


def is_known_device(name: str) -> bool:
    return name in DeviceName._value2member_map_


def state_matches_shape(device: DeviceName, payload: object) -> bool:
    """Check a decoded broker payload against the device's state model."""
    try:
        DEVICE_STATE_MODELS[device].model_validate(payload)
    except ValidationError:
        return False
    return True
