"""
Pytest fixtures for test database, client, and seeded bookings.

Each test gets a fresh SQLite database file (set TEST_DATABASE_URL to run
against PostgreSQL instead). Tests open short-lived sessions through
`session_factory`: on SQLite an open transaction holds the database write
lock, so a session left open would stall the code under test.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ticketing.main import app
from ticketing.db.base import Base
from ticketing.db.session import create_engine, get_db, get_session_factory, make_session_factory
from ticketing.models import Booking, BookingLineItem, Event, Payment, TicketType, User
from ticketing.models.booking import BookingStatus
from ticketing.models.payment import PaymentStatus
from ticketing.services.event_bus import EventBus, get_event_bus

CHECKOUT_REQUEST_ID = "ws_CO_18102026101500000001"
BOOKING_ID = 42


@dataclass
class SeededBooking:
    booking_id: int
    reference: str
    user_id: int
    event_id: int
    total_amount: Decimal
    ticket_type_ids: dict = field(default_factory=dict)  # name -> id
    payment_id: Optional[int] = None
    checkout_request_id: Optional[str] = None


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'ticketing.db'}"
    test_engine = create_engine(url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published_events(bus: EventBus) -> list:
    """Every domain event published on the test bus, in order."""
    events = []

    async def record(event):
        events.append(event)

    bus.subscribe(record)
    return events


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    bus: EventBus,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and the test event bus."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_event_bus] = lambda: bus

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def booking(session_factory: async_sessionmaker[AsyncSession]) -> SeededBooking:
    """
    Pending booking 42: two Regular (400.00) and one VIP (700.00) ticket,
    1500.00 in total, with no payment yet.
    """
    async with session_factory() as db:
        user = User(email="wanjiku@example.com", full_name="Wanjiku Kamau", phone="254712345678")
        event = Event(
            title="Nairobi Jazz Night",
            description="An evening of live jazz",
            venue="Carnivore Grounds",
            starts_at=datetime.now(timezone.utc) + timedelta(days=14),
        )
        db.add_all([user, event])
        await db.flush()

        regular = TicketType(event_id=event.id, name="Regular", price=Decimal("400.00"), quantity=200)
        vip = TicketType(event_id=event.id, name="VIP", price=Decimal("700.00"), quantity=50)
        db.add_all([regular, vip])
        await db.flush()

        booked = Booking(
            id=BOOKING_ID,
            user_id=user.id,
            event_id=event.id,
            seat_count=3,
            total_amount=Decimal("1500.00"),
            status=BookingStatus.PENDING.value,
        )
        db.add(booked)
        await db.flush()
        db.add_all([
            BookingLineItem(booking_id=booked.id, ticket_type_id=regular.id, quantity=2),
            BookingLineItem(booking_id=booked.id, ticket_type_id=vip.id, quantity=1),
        ])
        await db.commit()

        return SeededBooking(
            booking_id=booked.id,
            reference=booked.reference,
            user_id=user.id,
            event_id=event.id,
            total_amount=booked.total_amount,
            ticket_type_ids={"Regular": regular.id, "VIP": vip.id},
        )


@pytest_asyncio.fixture
async def pending_payment(
    session_factory: async_sessionmaker[AsyncSession],
    booking: SeededBooking,
) -> SeededBooking:
    """Booking 42 with an STK push in flight under CHECKOUT_REQUEST_ID."""
    async with session_factory() as db:
        payment = Payment(
            booking_id=booking.booking_id,
            user_id=booking.user_id,
            amount=booking.total_amount,
            method="mpesa",
            checkout_request_id=CHECKOUT_REQUEST_ID,
            merchant_request_id="29115-34620561-1",
            initiated_phone="254712345678",
            status=PaymentStatus.PENDING.value,
        )
        db.add(payment)
        await db.commit()
        booking.payment_id = payment.id
        booking.checkout_request_id = payment.checkout_request_id
    return booking


@pytest.fixture
def callback_body():
    """Build a raw STK push callback body as the provider sends it."""

    def build(
        checkout_request_id: str = CHECKOUT_REQUEST_ID,
        result_code: int = 0,
        result_desc: Optional[str] = None,
        amount=1500,
        receipt: str = "QWE123",
        phone: int = 254712345678,
    ) -> bytes:
        callback = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": checkout_request_id,
            "ResultCode": result_code,
            "ResultDesc": result_desc
            or ("The service request is processed successfully." if result_code == 0 else "Request cancelled by user"),
        }
        if result_code == 0:
            callback["CallbackMetadata"] = {
                "Item": [
                    {"Name": "Amount", "Value": amount},
                    {"Name": "MpesaReceiptNumber", "Value": receipt},
                    {"Name": "Balance"},
                    {"Name": "TransactionDate", "Value": 20261018101532},
                    {"Name": "PhoneNumber", "Value": phone},
                ]
            }
        return json.dumps({"Body": {"stkCallback": callback}}).encode()

    return build
