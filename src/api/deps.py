"""
FastAPI dependencies shared by the reservation routes.
"""
from typing import Optional

from fastapi import Header, Request

from config import Settings, get_settings
from error_handling.exceptions import AuthError
from services.payment_gateway import PaymentGateway, StripeGateway


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Authenticated caller id.

    Identity is established upstream; the authentication layer forwards the
    verified user id in X-User-Id.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthError()
    return user_id


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Payment gateway for the app, built from settings on first use."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = StripeGateway.from_settings(get_app_settings(request))
        request.app.state.payment_gateway = gateway
    return gateway
