"""
Shared fixtures for unit tests.

Builds a controller and a session on top of the in-memory broker transport.
"""

from __future__ import annotations

import pytest

from nexus_bridge.zigbee import ZigbeeController, ZigbeeSession
from tests.helpers.fakes import FakeTransport, RecordingSend


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def controller(fake_transport: FakeTransport) -> ZigbeeController:
    return ZigbeeController("nexus", fake_transport)


@pytest.fixture
def recording_send() -> RecordingSend:
    return RecordingSend()


@pytest.fixture
def session(controller: ZigbeeController, recording_send: RecordingSend) -> ZigbeeSession:
    return ZigbeeSession(controller, recording_send)
