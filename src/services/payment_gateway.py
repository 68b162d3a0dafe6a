"""
Payment gateway integration.

The reservation core only needs three things from a payment provider:
- create a payment intent for an amount, tagged with metadata
- cancel an intent that will never be used
- verify and parse a signed webhook payload

PaymentGateway is the seam; StripeGateway is the production adapter.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import stripe
from loguru import logger

from config import Settings
from error_handling.exceptions import (
    ConfigurationError,
    GatewayError,
    WebhookVerificationError,
)
from error_handling.logging_config import log_api_call

PAYMENT_SUCCEEDED = "payment_intent.succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    amount: int
    currency: str


@dataclass(frozen=True)
class PaymentEvent:
    """A verified webhook event."""
    id: str
    type: str
    object_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def reservation_id(self) -> Optional[str]:
        return self.metadata.get("reservation_id")


class PaymentGateway(ABC):
    """Interface of the external payment provider."""

    @abstractmethod
    def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None
    ) -> PaymentIntent:
        """
        Create a payment intent.

        Raises:
            GatewayError: If the provider call fails or times out
        """

    @abstractmethod
    def cancel_intent(self, intent_id: str) -> None:
        """
        Cancel an intent that will not be paid.

        Raises:
            GatewayError: If the provider call fails
        """

    @abstractmethod
    def parse_event(self, payload: Union[bytes, str], signature: Optional[str]) -> PaymentEvent:
        """
        Verify a webhook signature and parse the event.

        Raises:
            ConfigurationError: If no webhook secret is configured
            WebhookVerificationError: If the signature does not match
        """


class StripeGateway(PaymentGateway):
    """
    Stripe implementation of PaymentGateway.

    Uses a dedicated StripeClient so the timeout applies only to this service.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        max_network_retries: int = 1
    ):
        self.webhook_secret = webhook_secret
        self.client = stripe.StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout_seconds),
            max_network_retries=max_network_retries,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        """
        Build the gateway from application settings.

        Raises:
            ConfigurationError: If STRIPE_SECRET_KEY is not set
        """
        if not settings.stripe_secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY")
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.payment_timeout_seconds,
        )

    def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None
    ) -> PaymentIntent:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}

        try:
            with log_api_call("stripe", "create_payment_intent", amount=amount) as call:
                intent = self.client.payment_intents.create(params=params, options=options)
                call["intent_id"] = intent.id
        except stripe.StripeError as e:
            raise GatewayError(
                f"Stripe payment intent creation failed: {e}",
                operation="create_payment_intent",
                original_error=e,
                amount=amount,
                currency=currency
            )

        return PaymentIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=amount,
            currency=currency,
        )

    def cancel_intent(self, intent_id: str) -> None:
        try:
            with log_api_call("stripe", "cancel_payment_intent", intent_id=intent_id):
                self.client.payment_intents.cancel(intent_id)
        except stripe.StripeError as e:
            raise GatewayError(
                f"Stripe payment intent cancellation failed: {e}",
                operation="cancel_payment_intent",
                original_error=e,
                intent_id=intent_id
            )

    def parse_event(self, payload: Union[bytes, str], signature: Optional[str]) -> PaymentEvent:
        if not self.webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise WebhookVerificationError("Webhook payload is not valid UTF-8", original_error=e)

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Webhook Error: {e}", original_error=e)

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError("Webhook payload is not valid JSON", original_error=e)

        obj = (data.get("data") or {}).get("object") or {}
        event = PaymentEvent(
            id=data.get("id", ""),
            type=data.get("type", ""),
            object_id=obj.get("id"),
            metadata={k: str(v) for k, v in (obj.get("metadata") or {}).items()},
        )
        logger.debug(f"Verified Stripe event {event.id} type={event.type}")
        return event
