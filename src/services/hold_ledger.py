"""
HoldLedger - creates and releases HOLD reservations.

A hold is created in four steps:
1. Validate the request and price it from the menu catalog
2. Check (read-only) that some table or pair can seat the party
3. Create the payment intent at the gateway
4. Commit: re-read the busy set, re-run table selection and insert the
   reservation in one transaction guarded by the restaurant ledger version,
   retrying with backoff when another hold commits first
"""
from datetime import datetime, timedelta
from typing import List, Optional, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import Settings, get_settings
from models.database import (
    Reservation,
    ReservationItem,
    Slot,
    HOLD,
    CANCELLED,
    new_id,
    utc_now,
)
from models.schemas import HoldRequest, HoldResponse
from error_handling.exceptions import (
    AuthError,
    ConfigurationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    NoTablesAvailableError,
    ValidationError,
)
from error_handling.handlers import handle_database_errors, log_error
from error_handling.logging_config import log_performance, log_reservation_event
from services.assignment import TableAssignment, TableCandidate, select_tables
from services.catalog import PricedLine, get_active_tables, get_slot, price_items
from services.overlap_index import busy_table_ids
from services.payment_gateway import PaymentGateway
from services.restaurant_ledger import StaleLedgerError, bump_ledger_version, read_ledger_version


class HoldLedger:
    """
    Service class that owns the HOLD side of the reservation lifecycle.

    This service is responsible for:
    - Pricing requests from trusted menu data
    - Assigning tables without double-booking under concurrency
    - Creating the payment intent for the hold
    - Releasing holds on explicit cancellation
    """

    def __init__(
        self,
        session: Session,
        gateway: Optional[PaymentGateway],
        settings: Optional[Settings] = None
    ):
        """
        Initialize the hold ledger.

        Args:
            session: SQLAlchemy database session
            gateway: Payment gateway used for intents (None for read-only use)
            settings: Application settings (defaults to the global settings)
        """
        self.session = session
        self.gateway = gateway
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @log_performance("create_hold")
    @handle_database_errors("create_hold")
    def create_hold(self, user_id: Optional[str], request: Union[HoldRequest, dict]) -> HoldResponse:
        """
        Create a HOLD reservation and its payment intent.

        Args:
            user_id: Authenticated caller
            request: Hold request (validated schema or raw dict)

        Returns:
            HoldResponse with reservation id, tables, amount and client secret

        Raises:
            AuthError: If there is no authenticated caller
            ValidationError: If the request is malformed
            NotFoundError: If the slot does not exist
            NoTablesAvailableError: If no table or pair fits the party
            GatewayError: If the payment intent cannot be created
            ConflictError: If concurrent holds kept winning until retries ran out
            DatabaseError: If a write violates a database constraint
        """
        if not user_id:
            raise AuthError()
        if self.gateway is None:
            raise ConfigurationError("payment_gateway")
        request = self._coerce_request(request)

        slot = self._validate_slot(request)
        slot_start, slot_end = slot.start_at, slot.end_at

        lines = price_items(self.session, request.restaurant_id, request.items)
        total_amount = sum(line.amount for line in lines)
        if total_amount <= 0:
            raise ValidationError(
                "Reservation total must be positive",
                user_message="Please pre-order at least one priced menu item.",
                field="items",
                value=total_amount
            )
        currency = self.settings.currency

        # Fail fast before touching the gateway; the commit re-checks
        self._assign(request.restaurant_id, slot_start, slot_end, request.party_size, utc_now())
        # Release read locks before the external call
        self.session.rollback()

        reservation_id = new_id()
        with logger.contextualize(reservation_id=reservation_id, restaurant_id=request.restaurant_id):
            intent = self.gateway.create_intent(
                amount=total_amount,
                currency=currency,
                metadata={
                    "reservation_id": reservation_id,
                    "restaurant_id": request.restaurant_id,
                    "event_id": request.event_id,
                    "slot_id": request.slot_id,
                    "user_id": user_id,
                },
                idempotency_key=f"hold-{reservation_id}"
            )

            try:
                reservation = self._commit_with_retry(
                    reservation_id=reservation_id,
                    user_id=user_id,
                    request=request,
                    slot_start=slot_start,
                    slot_end=slot_end,
                    lines=lines,
                    total_amount=total_amount,
                    currency=currency,
                    payment_intent_id=intent.id,
                )
            except Exception:
                # Nothing will ever pay this intent
                self._release_intent(intent.id)
                raise

        log_reservation_event(
            "HOLD_CREATED",
            reservation_id=reservation.id,
            user_id=user_id,
            details={
                "restaurant_id": reservation.restaurant_id,
                "tables": reservation.assigned_table_ids,
                "party_size": reservation.party_size,
                "total_amount": total_amount,
                "currency": currency,
            }
        )

        return HoldResponse(
            reservation_id=reservation.id,
            assigned_table_ids=list(reservation.assigned_table_ids),
            total_amount=reservation.total_amount,
            currency=reservation.currency,
            payment_client_secret=intent.client_secret,
            hold_expires_at=reservation.hold_expires_at,
        )

    def _coerce_request(self, request: Union[HoldRequest, dict]) -> HoldRequest:
        if isinstance(request, HoldRequest):
            return request
        try:
            return HoldRequest.model_validate(request)
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise ValidationError(
                f"Bad input: {e.error_count()} validation errors",
                field=".".join(str(part) for part in first.get("loc", ())),
                value=first.get("input") if isinstance(first.get("input"), (str, int, float)) else None
            )

    def _validate_slot(self, request: HoldRequest) -> Slot:
        slot = get_slot(self.session, request.slot_id)

        if slot.event_id != request.event_id:
            raise ValidationError(
                f"Slot {slot.id} does not belong to event {request.event_id}",
                field="slot_id",
                value=request.slot_id,
                slot_event_id=slot.event_id
            )
        if slot.restaurant_id != request.restaurant_id:
            raise ValidationError(
                f"Slot {slot.id} does not belong to restaurant {request.restaurant_id}",
                field="restaurant_id",
                value=request.restaurant_id
            )
        if not slot.is_active:
            raise ValidationError(
                f"Slot {slot.id} is not open for booking",
                user_message="This time slot is no longer available.",
                field="slot_id",
                value=request.slot_id
            )
        if slot.end_at <= utc_now():
            raise ValidationError(
                f"Slot {slot.id} has already ended",
                user_message="This time slot is in the past.",
                field="slot_id",
                value=request.slot_id
            )
        return slot

    def _assign(
        self,
        restaurant_id: str,
        slot_start: datetime,
        slot_end: datetime,
        party_size: int,
        now: datetime
    ) -> TableAssignment:
        tables = [TableCandidate.from_model(t) for t in get_active_tables(self.session, restaurant_id)]
        busy = busy_table_ids(self.session, restaurant_id, slot_start, slot_end, now=now)
        return select_tables(tables, busy, party_size, restaurant_id=restaurant_id)

    # ------------------------------------------------------------------
    # Optimistic commit
    # ------------------------------------------------------------------

    def _commit_with_retry(self, **kwargs) -> Reservation:
        retryer = Retrying(
            stop=stop_after_attempt(self.settings.hold_max_attempts),
            wait=wait_exponential(multiplier=self.settings.hold_retry_backoff_seconds, max=2),
            retry=retry_if_exception_type(StaleLedgerError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            return retryer(self._commit_hold, **kwargs)
        except StaleLedgerError as e:
            raise ConflictError(
                f"Hold commit lost {self.settings.hold_max_attempts} races for restaurant {e.restaurant_id}",
                user_message="Tables changed while we were reserving. Please try again.",
                attempts=self.settings.hold_max_attempts,
                restaurant_id=e.restaurant_id
            )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            f"Hold commit conflict (attempt {retry_state.attempt_number}), "
            f"retrying in {retry_state.next_action.sleep if retry_state.next_action else 0:.3f}s"
        )

    def _commit_hold(
        self,
        reservation_id: str,
        user_id: str,
        request: HoldRequest,
        slot_start: datetime,
        slot_end: datetime,
        lines: List[PricedLine],
        total_amount: int,
        currency: str,
        payment_intent_id: str,
    ) -> Reservation:
        """One attempt of the atomic assign-and-insert."""
        now = utc_now()
        try:
            seen_version = read_ledger_version(self.session, request.restaurant_id)
            assignment = self._assign(request.restaurant_id, slot_start, slot_end, request.party_size, now)

            reservation = Reservation(
                id=reservation_id,
                user_id=user_id,
                restaurant_id=request.restaurant_id,
                event_id=request.event_id,
                slot_id=request.slot_id,
                party_size=request.party_size,
                assigned_table_ids=list(assignment.table_ids),
                status=HOLD,
                hold_expires_at=now + timedelta(minutes=self.settings.hold_minutes),
                total_amount=total_amount,
                currency=currency,
                created_at=now,
                payment_intent_id=payment_intent_id,
                slot_start_at=slot_start,
                slot_end_at=slot_end,
            )
            reservation.items = [
                ReservationItem(menu_item_id=line.item_id, quantity=line.quantity, unit_price=line.unit_price)
                for line in lines
            ]
            self.session.add(reservation)
            self.session.flush()

            bump_ledger_version(self.session, request.restaurant_id, seen_version, now)
            self.session.commit()
        except NoTablesAvailableError:
            self.session.rollback()
            raise
        except StaleLedgerError:
            self.session.rollback()
            raise

        logger.debug(f"Committed hold {reservation_id} on tables {reservation.assigned_table_ids}")
        return reservation

    def _release_intent(self, intent_id: Optional[str]) -> None:
        """Cancel an intent that will never be paid; failures are logged only."""
        if not intent_id or self.gateway is None:
            return
        try:
            self.gateway.cancel_intent(intent_id)
        except GatewayError as e:
            log_error(e, context={"intent_id": intent_id}, severity="WARNING")

    # ------------------------------------------------------------------
    # Read / cancel
    # ------------------------------------------------------------------

    def _get_owned(self, user_id: Optional[str], reservation_id: str, lock: bool = False) -> Reservation:
        if not user_id:
            raise AuthError()
        query = self.session.query(Reservation).filter(Reservation.id == reservation_id)
        if lock:
            query = query.with_for_update().populate_existing()
        reservation = query.first()
        # Foreign reservations look the same as missing ones
        if reservation is None or reservation.user_id != user_id:
            raise NotFoundError("reservation", reservation_id)
        return reservation

    @handle_database_errors("get_reservation")
    def get_reservation(self, user_id: Optional[str], reservation_id: str) -> Reservation:
        """
        Fetch a reservation owned by the caller.

        Raises:
            AuthError: If there is no authenticated caller
            NotFoundError: If the reservation does not exist or is not the caller's
        """
        return self._get_owned(user_id, reservation_id)

    @handle_database_errors("cancel_hold")
    def cancel_hold(self, user_id: Optional[str], reservation_id: str) -> Reservation:
        """
        Release a HOLD before it expires.

        Cancelling an already cancelled reservation is a no-op.

        Raises:
            AuthError: If there is no authenticated caller
            NotFoundError: If the reservation does not exist or is not the caller's
            ConflictError: If the reservation is CONFIRMED or EXPIRED
        """
        reservation = self._get_owned(user_id, reservation_id, lock=True)

        if reservation.status == CANCELLED:
            self.session.rollback()
            return reservation
        if reservation.status != HOLD:
            raise ConflictError(
                f"Cannot cancel reservation {reservation_id} in status {reservation.status}",
                user_message="Only reservations awaiting payment can be cancelled.",
                status=reservation.status
            )

        reservation.status = CANCELLED
        reservation.hold_expires_at = None
        reservation.cancelled_at = utc_now()
        self.session.commit()

        log_reservation_event(
            "CANCELLED",
            reservation_id=reservation.id,
            user_id=user_id,
            details={"tables": reservation.assigned_table_ids}
        )
        self._release_intent(reservation.payment_intent_id)
        return reservation
