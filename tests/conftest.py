"""
Pytest configuration and shared fixtures.
"""
import json
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Generator, List, Optional, Union

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from config import Settings
from error_handling.exceptions import GatewayError, WebhookVerificationError
from models.database import (
    Base,
    MenuItem,
    Reservation,
    RestaurantTable,
    Slot,
    HOLD,
    new_id,
    utc_now,
)
from services.payment_gateway import PaymentEvent, PaymentGateway, PaymentIntent


class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway.

    Records created and cancelled intents. parse_event accepts only the
    signature "valid".
    """

    def __init__(self, fail_create: bool = False, fail_cancel: bool = False):
        self.fail_create = fail_create
        self.fail_cancel = fail_cancel
        self.intents: List[Dict] = []
        self.cancelled: List[str] = []

    def create_intent(self, amount, currency, metadata, idempotency_key=None) -> PaymentIntent:
        if self.fail_create:
            raise GatewayError("gateway down", operation="create_payment_intent")
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents.append({
            "id": intent_id,
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata),
            "idempotency_key": idempotency_key,
        })
        return PaymentIntent(id=intent_id, client_secret=f"{intent_id}_secret", amount=amount, currency=currency)

    def cancel_intent(self, intent_id: str) -> None:
        if self.fail_cancel:
            raise GatewayError("gateway down", operation="cancel_payment_intent")
        self.cancelled.append(intent_id)

    def parse_event(self, payload: Union[bytes, str], signature: Optional[str]) -> PaymentEvent:
        if signature != "valid":
            raise WebhookVerificationError("Webhook Error: bad signature")
        data = json.loads(payload)
        obj = data["data"]["object"]
        return PaymentEvent(
            id=data["id"],
            type=data["type"],
            object_id=obj.get("id"),
            metadata=obj.get("metadata", {}),
        )


@pytest.fixture(scope="function")
def webhook_payload():
    """
    Build a raw Stripe event body carrying a reservation id in its metadata.
    """
    def _build(reservation_id: Optional[str], event_type: str = "payment_intent.succeeded") -> str:
        metadata = {"reservation_id": reservation_id} if reservation_id else {}
        return json.dumps({
            "id": "evt_1",
            "type": event_type,
            "data": {"object": {"id": "pi_1", "object": "payment_intent", "metadata": metadata}},
        })
    return _build


@pytest.fixture(scope="function")
def db_engine():
    """
    Create an in-memory SQLite engine shared across threads and sessions.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """
    Create a database session for testing.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def settings() -> Settings:
    """
    Settings with no retry backoff and test Stripe credentials.
    """
    return Settings(
        DATABASE_URL="sqlite://",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_test_secret",
        HOLD_RETRY_BACKOFF_SECONDS=0,
        HOLD_MINUTES=10,
        HOLD_MAX_ATTEMPTS=4,
        CURRENCY="gbp",
        ENVIRONMENT="test",
    )


@pytest.fixture(scope="function")
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture(scope="function")
def slot_start() -> datetime:
    return (utc_now() + timedelta(days=1)).replace(hour=19, minute=0, second=0, microsecond=0)


@pytest.fixture(scope="function")
def restaurant(db_session: Session, slot_start: datetime) -> Dict:
    """
    Seed restaurant r1.

    Tables: t2 (2 seats, group A), t4 (4 seats, group A), t6 (6 seats, no group).
    Slots: s1 [19:00, 21:00) and s2 [21:00, 23:00) for event e1.
    Menu: m_menu 5000, m_wine 2500, m_retired 999 (inactive).
    """
    tables = [
        RestaurantTable(id="t2", restaurant_id="r1", name="Window 2", seats=2, join_group_id="A"),
        RestaurantTable(id="t4", restaurant_id="r1", name="Window 4", seats=4, join_group_id="A"),
        RestaurantTable(id="t6", restaurant_id="r1", name="Booth 6", seats=6),
    ]
    slots = [
        Slot(id="s1", event_id="e1", restaurant_id="r1",
             start_at=slot_start, end_at=slot_start + timedelta(hours=2)),
        Slot(id="s2", event_id="e1", restaurant_id="r1",
             start_at=slot_start + timedelta(hours=2), end_at=slot_start + timedelta(hours=4)),
    ]
    menu = [
        MenuItem(id="m_menu", restaurant_id="r1", name="Tasting menu", price=5000),
        MenuItem(id="m_wine", restaurant_id="r1", name="Wine pairing", price=2500),
        MenuItem(id="m_retired", restaurant_id="r1", name="Old dish", price=999, is_active=False),
    ]
    db_session.add_all(tables + slots + menu)
    db_session.commit()
    return {"id": "r1", "event_id": "e1", "slots": {s.id: s for s in slots}}


@pytest.fixture(scope="function")
def hold_request():
    """
    Build a hold request dict for restaurant r1, slot s1.
    """
    def _build(party_size: int = 2, slot_id: str = "s1", items=None, **overrides) -> Dict:
        body = {
            "restaurant_id": "r1",
            "event_id": "e1",
            "slot_id": slot_id,
            "party_size": party_size,
            "items": items if items is not None else [{"item_id": "m_menu", "quantity": party_size}],
        }
        body.update(overrides)
        return body
    return _build


@pytest.fixture(scope="function")
def make_reservation(db_session: Session, restaurant: Dict):
    """
    Insert a reservation directly, bypassing the hold flow.
    """
    def _make(
        table_ids: List[str],
        status: str = HOLD,
        slot_id: str = "s1",
        hold_expires_at: Optional[datetime] = None,
        user_id: str = "user-1",
        session: Optional[Session] = None,
    ) -> Reservation:
        session = session or db_session
        slot = restaurant["slots"][slot_id]
        if status == HOLD and hold_expires_at is None:
            hold_expires_at = utc_now() + timedelta(minutes=10)
        reservation = Reservation(
            id=new_id(),
            user_id=user_id,
            restaurant_id="r1",
            event_id="e1",
            slot_id=slot_id,
            party_size=2,
            assigned_table_ids=list(table_ids),
            status=status,
            hold_expires_at=hold_expires_at,
            total_amount=5000,
            currency="gbp",
            payment_intent_id=f"pi_{new_id()[:8]}",
            slot_start_at=slot.start_at,
            slot_end_at=slot.end_at,
        )
        session.add(reservation)
        session.commit()
        return reservation
    return _make
