"""
Tests for the ConfirmationProcessor.

Tests cover:
- HOLD -> CONFIRMED transition and reservation numbers
- Idempotent redelivery of payment events
- Lapsed holds, cancelled and unknown reservations
"""
import re
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from error_handling.exceptions import ConflictError
from models.database import (
    Reservation,
    RestaurantLedger,
    HOLD,
    CONFIRMED,
    CANCELLED,
    EXPIRED,
    utc_now,
)
from services.confirmation import MAX_CONFIRM_ATTEMPTS, ConfirmationProcessor, generate_reservation_number
from services.payment_gateway import PaymentEvent
from services.restaurant_ledger import StaleLedgerError

NUMBER_PATTERN = re.compile(r"^EV\d{8}-[A-Z0-9]{4}$")


@pytest.fixture
def processor(db_session):
    return ConfirmationProcessor(db_session)


def succeeded(reservation_id):
    return PaymentEvent(
        id="evt_1",
        type="payment_intent.succeeded",
        object_id="pi_1",
        metadata={"reservation_id": reservation_id} if reservation_id else {},
    )


class TestReservationNumber:
    """Test reservation number generation."""

    def test_format(self):
        number = generate_reservation_number(datetime(2025, 12, 31, 23, 59))
        assert NUMBER_PATTERN.match(number)
        assert number.startswith("EV20251231-")

    def test_defaults_to_today(self):
        assert generate_reservation_number().startswith(f"EV{utc_now().strftime('%Y%m%d')}-")


class TestConfirm:
    """Test confirming paid holds."""

    def test_confirms_live_hold(self, processor, make_reservation, db_session):
        reservation = make_reservation(["t6"])

        confirmed = processor.confirm(reservation.id)

        assert confirmed.status == CONFIRMED
        assert NUMBER_PATTERN.match(confirmed.reservation_number)
        assert confirmed.hold_expires_at is None
        assert confirmed.confirmed_at is not None
        assert confirmed.assigned_table_ids == ["t6"]

    def test_redelivery_is_idempotent(self, processor, make_reservation):
        """Test that a second payment event leaves the reservation untouched."""
        reservation = make_reservation(["t6"])

        first = processor.confirm(reservation.id)
        number, confirmed_at = first.reservation_number, first.confirmed_at
        second = processor.confirm(reservation.id)

        assert second.status == CONFIRMED
        assert second.reservation_number == number
        assert second.confirmed_at == confirmed_at

    def test_unknown_reservation(self, processor, restaurant):
        assert processor.confirm("does-not-exist") is None

    def test_cancelled_reservation_not_confirmed(self, processor, make_reservation):
        """Test that payment for a cancelled hold does not resurrect it."""
        reservation = make_reservation(["t6"], status=CANCELLED)

        result = processor.confirm(reservation.id)

        assert result.status == CANCELLED
        assert result.reservation_number is None

    def test_lapsed_hold_with_free_tables(self, processor, make_reservation, db_session):
        """Test that a late payment confirms an expired hold whose tables are still free."""
        reservation = make_reservation(["t6"], status=HOLD, hold_expires_at=utc_now() - timedelta(minutes=1))

        confirmed = processor.confirm(reservation.id)

        assert confirmed.status == CONFIRMED
        assert db_session.get(RestaurantLedger, "r1", populate_existing=True).version == 1

    def test_swept_hold_with_free_tables(self, processor, make_reservation):
        reservation = make_reservation(["t6"], status=EXPIRED)
        assert processor.confirm(reservation.id).status == CONFIRMED

    def test_lapsed_hold_with_taken_tables(self, processor, make_reservation, db_session):
        """Test that a late payment never double-books a reassigned table."""
        lapsed = make_reservation(["t6"], status=HOLD, hold_expires_at=utc_now() - timedelta(minutes=1))
        make_reservation(["t6"], status=CONFIRMED, user_id="user-2")

        result = processor.confirm(lapsed.id)

        assert result.status == HOLD
        assert result.reservation_number is None
        stored = db_session.get(Reservation, lapsed.id, populate_existing=True)
        assert stored.status == HOLD

    def test_number_collision_regenerates(self, processor, make_reservation, db_session):
        """Test that a number already in use is never reused."""
        taken = make_reservation(["t4"], status=CONFIRMED)
        taken.reservation_number = "EV20300101-AAAA"
        db_session.commit()
        reservation = make_reservation(["t6"])

        with patch(
            "services.confirmation.generate_reservation_number",
            side_effect=["EV20300101-AAAA", "EV20300101-BBBB"]
        ):
            confirmed = processor.confirm(reservation.id)

        assert confirmed.reservation_number == "EV20300101-BBBB"

    def test_number_space_exhausted(self, processor, make_reservation, db_session):
        taken = make_reservation(["t4"], status=CONFIRMED)
        taken.reservation_number = "EV20300101-AAAA"
        db_session.commit()
        reservation = make_reservation(["t6"])

        with patch("services.confirmation.generate_reservation_number", return_value="EV20300101-AAAA"):
            with pytest.raises(ConflictError):
                processor.confirm(reservation.id)

        assert db_session.get(Reservation, reservation.id, populate_existing=True).status == HOLD


class TestHandleEvent:
    """Test payment event dispatch."""

    def test_payment_succeeded_confirms(self, processor, make_reservation):
        reservation = make_reservation(["t6"])
        assert processor.handle_event(succeeded(reservation.id)).status == CONFIRMED

    def test_other_event_types_ignored(self, processor, make_reservation):
        reservation = make_reservation(["t6"])
        event = PaymentEvent(id="evt_2", type="payment_intent.payment_failed",
                             metadata={"reservation_id": reservation.id})

        assert processor.handle_event(event) is None
        assert reservation.status == HOLD

    def test_event_without_reservation_id_ignored(self, processor, restaurant):
        assert processor.handle_event(succeeded(None)) is None

    def test_confirm_conflict_acknowledged(self, processor, make_reservation, db_session):
        """Test that a confirmation that keeps losing ledger races is logged, not raised."""
        reservation = make_reservation(["t6"], hold_expires_at=utc_now() - timedelta(minutes=1))

        with patch(
            "services.confirmation.bump_ledger_version",
            side_effect=StaleLedgerError("r1", 0)
        ) as bump:
            assert processor.handle_event(succeeded(reservation.id)) is None
            with pytest.raises(ConflictError):
                processor.confirm(reservation.id)

        assert bump.call_count == 2 * MAX_CONFIRM_ATTEMPTS
        assert db_session.get(Reservation, reservation.id, populate_existing=True).status == HOLD
