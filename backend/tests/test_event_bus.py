"""
Tests for the in-process domain event bus and its Redis fan-out.
"""

import json

import pytest

from ticketing.schemas.domain_events import BookingConfirmed, PaymentFailed
from ticketing.services import event_bus as event_bus_module
from ticketing.services.event_bus import EventBus, publish_to_redis


def confirmed_event() -> BookingConfirmed:
    return BookingConfirmed(
        booking_id=42,
        booking_reference="BK-1760000000000-AB12CD",
        user_id=1,
        event_id=1,
        payment_id=7,
        ticket_count=3,
    )


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis went away")
        self.published.append((channel, message))


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    received = []

    async def broken(event):
        raise RuntimeError("handler exploded")

    async def recorder(event):
        received.append(event)

    bus.subscribe(broken)
    bus.subscribe(recorder)

    await bus.publish(confirmed_event())

    assert len(received) == 1


@pytest.mark.asyncio
async def test_subscribe_is_idempotent_and_unsubscribe_removes():
    bus = EventBus()
    received = []

    async def recorder(event):
        received.append(event)

    bus.subscribe(recorder)
    bus.subscribe(recorder)
    await bus.publish(confirmed_event())
    bus.unsubscribe(recorder)
    await bus.publish(confirmed_event())

    assert len(received) == 1


def test_event_message_shape():
    message = PaymentFailed(
        payment_id=7,
        booking_id=42,
        user_id=1,
        checkout_request_id="ws_CO_1",
        result_code=1032,
        reason="Request cancelled by user",
    ).to_message()

    assert message["type"] == "payment.failed"
    assert message["payload"]["result_code"] == 1032
    assert "occurred_at" in message["payload"]


@pytest.mark.asyncio
async def test_publish_to_redis(monkeypatch):
    fake = FakeRedis()

    async def fake_get_redis():
        return fake

    monkeypatch.setattr(event_bus_module, "get_redis", fake_get_redis)

    await publish_to_redis(confirmed_event())

    channel, message = fake.published[0]
    assert channel == "ticketing:events"
    assert json.loads(message)["type"] == "booking.confirmed"


@pytest.mark.asyncio
async def test_publish_to_redis_failure_is_swallowed(monkeypatch):
    async def fake_get_redis():
        return FakeRedis(fail=True)

    monkeypatch.setattr(event_bus_module, "get_redis", fake_get_redis)

    await publish_to_redis(confirmed_event())


@pytest.mark.asyncio
async def test_publish_to_redis_without_redis(monkeypatch):
    async def no_redis():
        return None

    monkeypatch.setattr(event_bus_module, "get_redis", no_redis)

    await publish_to_redis(confirmed_event())
