"""
Unit tests for ZigbeeController.

Covers listener fan-out, broker subscription reference counting, topic
routing and failure isolation.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from nexus_bridge.devices import DeviceName
from nexus_bridge.exceptions import TransportError
from nexus_bridge.zigbee import ZigbeeController
from tests.helpers.fakes import FakeTransport

DESK = DeviceName.DESK_LAMP
FLOOR = DeviceName.LIVING_ROOM_FLOOR_LAMP
DESK_STATE = {"state": "ON", "brightness": 120}


class TestControllerInit:
    """Construction and topic helpers."""

    def test_registers_message_handler_with_transport(self, fake_transport):
        controller = ZigbeeController("nexus", fake_transport)
        assert fake_transport.handler == controller.handle_message

    def test_topics(self, controller):
        assert controller.state_topic(DESK) == "nexus/desk_lamp"
        assert controller.get_topic(DESK) == "nexus/desk_lamp/get"
        assert controller.set_topic(FLOOR) == "nexus/living_room_floor_lamp/set"

    def test_no_devices_subscribed_initially(self, controller):
        assert controller.subscribed_devices == ()
        assert controller.listener_count(DESK) == 0


class TestSubscribe:
    """subscribe_to_device ordering and reference counting."""

    @pytest.mark.asyncio
    async def test_first_listener_publishes_get_then_subscribes(self, controller, fake_transport):
        await controller.subscribe_to_device(DESK, MagicMock())

        assert fake_transport.calls == [
            ("publish", "nexus/desk_lamp/get", json.dumps({"state": {}}).encode()),
            ("subscribe", "nexus/desk_lamp", None),
        ]
        assert controller.subscribed_devices == (DESK,)

    @pytest.mark.asyncio
    async def test_second_listener_only_requests_state(self, controller, fake_transport):
        await controller.subscribe_to_device(DESK, MagicMock())
        fake_transport.calls.clear()

        await controller.subscribe_to_device(DESK, MagicMock())

        assert fake_transport.calls == [("publish", "nexus/desk_lamp/get", b'{"state": {}}')]
        assert controller.listener_count(DESK) == 2

    @pytest.mark.asyncio
    async def test_publish_failure_rolls_back_listener(self, controller, fake_transport):
        fake_transport.failures["publish"] = TransportError("publish", "boom", "nexus/desk_lamp/get")

        with pytest.raises(TransportError):
            await controller.subscribe_to_device(DESK, MagicMock())

        assert controller.listener_count(DESK) == 0
        assert controller.subscribed_devices == ()

    @pytest.mark.asyncio
    async def test_subscribe_failure_rolls_back_listener(self, controller, fake_transport):
        fake_transport.failures["subscribe"] = TransportError("subscribe", "boom", "nexus/desk_lamp")

        with pytest.raises(TransportError):
            await controller.subscribe_to_device(DESK, MagicMock())

        assert controller.subscribed_devices == ()

    @pytest.mark.asyncio
    async def test_failed_second_listener_keeps_first(self, controller, fake_transport):
        first = MagicMock()
        await controller.subscribe_to_device(DESK, first)
        fake_transport.failures["publish"] = TransportError("publish", "boom")

        with pytest.raises(TransportError):
            await controller.subscribe_to_device(DESK, MagicMock())

        assert controller.listener_count(DESK) == 1
        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)
        first.assert_called_once_with(DESK_STATE)

    @pytest.mark.asyncio
    async def test_concurrent_registrants_share_one_broker_subscribe(self, controller, fake_transport):
        await asyncio.gather(
            controller.subscribe_to_device(DESK, MagicMock()),
            controller.subscribe_to_device(DESK, MagicMock()),
        )

        assert fake_transport.ops("subscribe") == ["nexus/desk_lamp"]
        assert controller.listener_count(DESK) == 2

    @pytest.mark.asyncio
    async def test_concurrent_registrant_rolled_back_when_subscribe_fails(self):
        class SlowFailingSubscribe(FakeTransport):
            async def subscribe(self, topic: str) -> None:
                await asyncio.sleep(0.01)
                raise TransportError("subscribe", "not authorized", topic)

        transport = SlowFailingSubscribe()
        zigbee = ZigbeeController("nexus", transport)
        first, second = MagicMock(), MagicMock()

        results = await asyncio.gather(
            zigbee.subscribe_to_device(DESK, first),
            zigbee.subscribe_to_device(DESK, second),
            return_exceptions=True,
        )

        assert all(isinstance(result, TransportError) for result in results)
        assert zigbee.listener_count(DESK) == 0
        assert zigbee.subscribed_devices == ()

    @pytest.mark.asyncio
    async def test_waiting_registrant_retries_after_first_subscribe_fails(self):
        class FailOnceSubscribe(FakeTransport):
            attempts = 0

            async def subscribe(self, topic: str) -> None:
                self.attempts += 1
                await asyncio.sleep(0)
                if self.attempts == 1:
                    raise TransportError("subscribe", "timed out", topic)
                await super().subscribe(topic)

        transport = FailOnceSubscribe()
        zigbee = ZigbeeController("nexus", transport)
        first, second = MagicMock(), MagicMock()

        results = await asyncio.gather(
            zigbee.subscribe_to_device(DESK, first),
            zigbee.subscribe_to_device(DESK, second),
            return_exceptions=True,
        )

        assert isinstance(results[0], TransportError)
        assert results[1] is None
        assert transport.ops("subscribe") == ["nexus/desk_lamp"]
        transport.deliver("nexus/desk_lamp", DESK_STATE)
        first.assert_not_called()
        second.assert_called_once_with(DESK_STATE)


class TestUnsubscribe:
    """unsubscribe_from_device bookkeeping."""

    @pytest.mark.asyncio
    async def test_removing_one_of_two_keeps_broker_subscription(self, controller, fake_transport):
        first, second = MagicMock(), MagicMock()
        await controller.subscribe_to_device(DESK, first)
        await controller.subscribe_to_device(DESK, second)

        await controller.unsubscribe_from_device(DESK, first)

        assert fake_transport.ops("unsubscribe") == []
        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)
        first.assert_not_called()
        second.assert_called_once_with(DESK_STATE)

    @pytest.mark.asyncio
    async def test_removing_last_listener_unsubscribes_broker(self, controller, fake_transport):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)

        await controller.unsubscribe_from_device(DESK, listener)

        assert fake_transport.ops("unsubscribe") == ["nexus/desk_lamp"]
        assert controller.subscribed_devices == ()
        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_resubscribe_after_teardown_subscribes_again(self, controller, fake_transport):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)
        await controller.unsubscribe_from_device(DESK, listener)
        fake_transport.calls.clear()

        await controller.subscribe_to_device(DESK, listener)

        assert [op for op, _, _ in fake_transport.calls] == ["publish", "subscribe"]

    @pytest.mark.asyncio
    async def test_unknown_listener_is_noop(self, controller, fake_transport):
        registered = MagicMock()
        await controller.subscribe_to_device(DESK, registered)

        await controller.unsubscribe_from_device(DESK, MagicMock())
        await controller.unsubscribe_from_device(FLOOR, MagicMock())

        assert controller.listener_count(DESK) == 1
        assert fake_transport.ops("unsubscribe") == []

    @pytest.mark.asyncio
    async def test_same_callable_registered_twice_is_removed_once(self, controller, fake_transport):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)
        await controller.subscribe_to_device(DESK, listener)

        await controller.unsubscribe_from_device(DESK, listener)

        assert controller.listener_count(DESK) == 1
        assert fake_transport.ops("unsubscribe") == []

    @pytest.mark.asyncio
    async def test_broker_failure_still_updates_registry(self, controller, fake_transport):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)
        fake_transport.failures["unsubscribe"] = TransportError("unsubscribe", "gone", "nexus/desk_lamp")

        with pytest.raises(TransportError):
            await controller.unsubscribe_from_device(DESK, listener)

        assert controller.subscribed_devices == ()

    @pytest.mark.asyncio
    async def test_never_subscribed_topic_is_not_unsubscribed(self):
        class RefusingSubscribe(FakeTransport):
            async def subscribe(self, topic: str) -> None:
                raise TransportError("subscribe", "refused", topic)

        transport = RefusingSubscribe()
        zigbee = ZigbeeController("nexus", transport)
        listener = MagicMock()
        with pytest.raises(TransportError):
            await zigbee.subscribe_to_device(DESK, listener)

        await zigbee.unsubscribe_from_device(DESK, listener)

        assert transport.ops("unsubscribe") == []


class TestSetDeviceState:
    """set_device_state publishes one command."""

    @pytest.mark.asyncio
    async def test_publishes_to_set_topic(self, controller, fake_transport):
        await controller.set_device_state(DESK, {"state": "ON"})

        assert fake_transport.calls == [("publish", "nexus/desk_lamp/set", json.dumps({"state": "ON"}).encode())]

    @pytest.mark.asyncio
    async def test_propagates_transport_error(self, controller, fake_transport):
        fake_transport.connected = False

        with pytest.raises(TransportError):
            await controller.set_device_state(DESK, {"state": "OFF"})


class TestHandleMessage:
    """Inbound broker message routing."""

    @pytest.mark.asyncio
    async def test_fans_out_in_registration_order(self, controller, fake_transport):
        order: list[str] = []
        await controller.subscribe_to_device(DESK, lambda state: order.append(f"a:{state['brightness']}"))
        await controller.subscribe_to_device(DESK, lambda state: order.append(f"b:{state['brightness']}"))

        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)

        assert order == ["a:120", "b:120"]

    @pytest.mark.asyncio
    async def test_only_matching_device_listeners_invoked(self, controller, fake_transport):
        desk, floor = MagicMock(), MagicMock()
        await controller.subscribe_to_device(DESK, desk)
        await controller.subscribe_to_device(FLOOR, floor)

        fake_transport.deliver("nexus/living_room_floor_lamp", {"state": "OFF"})

        desk.assert_not_called()
        floor.assert_called_once_with({"state": "OFF"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "topic",
        [
            "zigbee2mqtt/desk_lamp",
            "nexus/desk_lamp/set",
            "nexus/desk_lamp/get",
            "nexus/ceiling_fan",
            "nexus",
            "desk_lamp",
        ],
    )
    async def test_ignores_foreign_topics(self, controller, fake_transport, topic):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)

        fake_transport.deliver(topic, DESK_STATE)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_multi_level_namespace(self, fake_transport):
        zigbee = ZigbeeController("home/nexus", fake_transport)
        listener = MagicMock()
        await zigbee.subscribe_to_device(DESK, listener)

        fake_transport.deliver("home/nexus/desk_lamp", DESK_STATE)
        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)
        fake_transport.deliver("home/nexus/desk_lamp/set", DESK_STATE)

        assert fake_transport.ops("subscribe") == ["home/nexus/desk_lamp"]
        listener.assert_called_once_with(DESK_STATE)

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_dropped(self, controller, fake_transport):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)

        fake_transport.deliver("nexus/desk_lamp", "{not json")
        fake_transport.deliver("nexus/desk_lamp", b"\xff\xfe")
        listener.assert_not_called()

        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)
        listener.assert_called_once_with(DESK_STATE)

    @pytest.mark.asyncio
    async def test_shape_mismatch_is_still_forwarded(self, controller, fake_transport):
        listener = MagicMock()
        await controller.subscribe_to_device(DESK, listener)

        fake_transport.deliver("nexus/desk_lamp", {"unexpected": True})

        listener.assert_called_once_with({"unexpected": True})

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, controller, fake_transport):
        broken = MagicMock(side_effect=RuntimeError("listener bug"))
        healthy = MagicMock()
        await controller.subscribe_to_device(DESK, broken)
        await controller.subscribe_to_device(DESK, healthy)

        fake_transport.deliver("nexus/desk_lamp", DESK_STATE)

        broken.assert_called_once()
        healthy.assert_called_once_with(DESK_STATE)

    def test_message_without_listeners_is_ignored(self, controller):
        controller.handle_message("nexus/desk_lamp", b'{"state": "ON"}')
        assert controller.subscribed_devices == ()
