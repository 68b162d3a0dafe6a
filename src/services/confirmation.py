"""
ConfirmationProcessor - turns a paid HOLD into a CONFIRMED reservation.

Driven by verified payment-succeeded webhook events. The payment provider
delivers at least once, so confirming is idempotent: a reservation that is
already CONFIRMED is returned untouched.
"""
import secrets
import string
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from models.database import Reservation, HOLD, CONFIRMED, CANCELLED, EXPIRED, utc_now
from error_handling.exceptions import ConflictError
from error_handling.handlers import handle_database_errors, log_error
from error_handling.logging_config import log_reservation_event
from services.expiry import is_hold_expired
from services.overlap_index import busy_table_ids
from services.payment_gateway import PaymentEvent, PAYMENT_SUCCEEDED
from services.restaurant_ledger import StaleLedgerError, bump_ledger_version, read_ledger_version

RESERVATION_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
RESERVATION_NUMBER_SUFFIX_LENGTH = 4
MAX_NUMBER_ATTEMPTS = 5
MAX_CONFIRM_ATTEMPTS = 3


def generate_reservation_number(now: Optional[datetime] = None) -> str:
    """
    Build a reservation number: EV + UTC date (YYYYMMDD) + "-" + 4 uppercase alphanumerics.

    Example: EV20251231-7QX2
    """
    now = now or utc_now()
    suffix = "".join(
        secrets.choice(RESERVATION_NUMBER_ALPHABET) for _ in range(RESERVATION_NUMBER_SUFFIX_LENGTH)
    )
    return f"EV{now.strftime('%Y%m%d')}-{suffix}"


class ConfirmationProcessor:
    """
    Service class that confirms reservations after payment.

    This service is responsible for:
    - Idempotent HOLD -> CONFIRMED transitions
    - Minting unique reservation numbers
    - Refusing to confirm a lapsed hold whose tables were taken meanwhile
    """

    def __init__(self, session: Session):
        """
        Initialize the processor with a database session.

        Args:
            session: SQLAlchemy database session
        """
        self.session = session

    def handle_event(self, event: PaymentEvent) -> Optional[Reservation]:
        """
        React to a verified payment event.

        Only payment_intent.succeeded events carrying a reservation_id drive a
        confirmation; everything else is acknowledged and ignored. A confirmation
        that keeps losing ledger races is logged at ERROR for manual follow-up
        and acknowledged as well.
        """
        if event.type != PAYMENT_SUCCEEDED:
            logger.debug(f"Ignoring payment event {event.id} of type {event.type}")
            return None
        if not event.reservation_id:
            logger.warning(f"Payment event {event.id} has no reservation_id in metadata")
            return None
        try:
            return self.confirm(event.reservation_id)
        except ConflictError as e:
            log_error(
                e,
                context={"event_id": event.id, "intent_id": event.object_id, "action": "confirm manually"},
                severity="ERROR"
            )
            return None

    @handle_database_errors("confirm_reservation")
    def confirm(self, reservation_id: str) -> Optional[Reservation]:
        """
        Confirm a reservation whose payment succeeded.

        Args:
            reservation_id: Reservation to confirm

        Returns:
            The reservation (confirmed, or unchanged when confirmation is not
            possible), or None if the id is unknown
        """
        retryer = Retrying(
            stop=stop_after_attempt(MAX_CONFIRM_ATTEMPTS),
            retry=retry_if_exception_type((StaleLedgerError, IntegrityError)),
            reraise=True,
        )
        try:
            return retryer(self._confirm_once, reservation_id)
        except (StaleLedgerError, IntegrityError) as e:
            raise ConflictError(
                f"Could not confirm reservation {reservation_id}: {e}",
                attempts=MAX_CONFIRM_ATTEMPTS,
                reservation_id=reservation_id
            )

    def _confirm_once(self, reservation_id: str) -> Optional[Reservation]:
        now = utc_now()
        reservation = self.session.query(Reservation).filter(
            Reservation.id == reservation_id
        ).with_for_update().populate_existing().first()

        if reservation is None:
            self.session.rollback()
            logger.warning(f"Payment succeeded for unknown reservation {reservation_id}")
            return None

        if reservation.status == CONFIRMED:
            self.session.rollback()
            logger.info(f"Reservation {reservation_id} already confirmed as {reservation.reservation_number}")
            return reservation

        if reservation.status == CANCELLED:
            self.session.rollback()
            logger.error(
                f"Payment succeeded for cancelled reservation {reservation_id} "
                f"(intent {reservation.payment_intent_id}); refund required"
            )
            return reservation

        lapsed = reservation.status == EXPIRED or (
            reservation.status == HOLD and is_hold_expired(reservation, now)
        )

        try:
            seen_version = None
            if lapsed:
                # The tables were released when the hold lapsed; take them back
                # only if nobody else holds them now.
                seen_version = read_ledger_version(self.session, reservation.restaurant_id)
                busy = busy_table_ids(
                    self.session,
                    reservation.restaurant_id,
                    reservation.slot_start_at,
                    reservation.slot_end_at,
                    now=now,
                    exclude_reservation_id=reservation.id
                )
                taken = busy.intersection(reservation.assigned_table_ids or [])
                if taken:
                    self.session.rollback()
                    logger.error(
                        f"Payment succeeded for lapsed reservation {reservation_id} but tables "
                        f"{sorted(taken)} were reassigned (intent {reservation.payment_intent_id}); refund required"
                    )
                    return reservation

            reservation.reservation_number = self._unique_reservation_number(now)
            reservation.status = CONFIRMED
            reservation.hold_expires_at = None
            reservation.confirmed_at = now
            self.session.flush()

            if seen_version is not None:
                bump_ledger_version(self.session, reservation.restaurant_id, seen_version, now)
            self.session.commit()
        except (StaleLedgerError, IntegrityError):
            self.session.rollback()
            raise

        log_reservation_event(
            "CONFIRMED",
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            details={
                "reservation_number": reservation.reservation_number,
                "tables": reservation.assigned_table_ids,
                "lapsed_hold": lapsed,
            }
        )
        return reservation

    def _unique_reservation_number(self, now: datetime) -> str:
        """Generate a number not yet in use; the unique constraint backs this up at commit."""
        for _ in range(MAX_NUMBER_ATTEMPTS):
            candidate = generate_reservation_number(now)
            exists = self.session.query(Reservation.id).filter(
                Reservation.reservation_number == candidate
            ).first()
            if exists is None:
                return candidate
            logger.warning(f"Reservation number collision on {candidate}, regenerating")
        raise ConflictError(
            "Could not generate a unique reservation number",
            attempts=MAX_NUMBER_ATTEMPTS
        )
