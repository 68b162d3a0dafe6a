"""
Reservation API: create/cancel holds, read reservations, payment webhook.

Caller identified by the X-User-Id header (see api.deps.get_current_user_id).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from loguru import logger
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config import Settings
from models.database import get_db
from models.schemas import HoldRequest, HoldResponse, ReservationResponse, WebhookAck
from services.confirmation import ConfirmationProcessor
from services.hold_ledger import HoldLedger
from services.payment_gateway import PaymentGateway
from .deps import get_app_settings, get_current_user_id, get_payment_gateway

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/reservations/hold", response_model=HoldResponse, status_code=201)
def create_hold(
    body: HoldRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_app_settings),
) -> HoldResponse:
    """
    Hold table(s) for a slot and create the payment intent.
    The hold lasts HOLD_MINUTES; pay with the returned client secret to confirm.
    """
    return HoldLedger(db, gateway, settings).create_hold(user_id, body)


@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return HoldLedger(db, None, settings).get_reservation(user_id, reservation_id)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_hold(
    reservation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_app_settings),
):
    """Release a hold before it expires. Idempotent for already cancelled holds."""
    return HoldLedger(db, gateway, settings).cancel_hold(user_id, reservation_id)


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
) -> WebhookAck:
    """
    Confirm reservations on payment_intent.succeeded.
    Signature is verified against the raw body. Unknown, already confirmed and
    persistently conflicting reservations are acknowledged so the provider stops
    redelivering. Signature, configuration and database failures return an error.
    """
    payload = await request.body()
    event = gateway.parse_event(payload, stripe_signature)
    await run_in_threadpool(ConfirmationProcessor(db).handle_event, event)
    logger.debug(f"Webhook event {event.id} ({event.type}) processed")
    return WebhookAck()
