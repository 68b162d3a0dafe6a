"""
Models package - SQLAlchemy ORM models and Pydantic schemas.
"""
from .database import (
    Base,
    Slot,
    RestaurantTable,
    MenuItem,
    Reservation,
    ReservationItem,
    RestaurantLedger,
    HOLD,
    CONFIRMED,
    CANCELLED,
    EXPIRED,
    utc_now,
    init_db,
    create_tables,
    get_db_session,
    get_db,
)

from .schemas import (
    HoldItem,
    HoldRequest,
    HoldResponse,
    ReservationResponse,
    WebhookAck,
)

__all__ = [
    # Database models
    "Base",
    "Slot",
    "RestaurantTable",
    "MenuItem",
    "Reservation",
    "ReservationItem",
    "RestaurantLedger",
    # Reservation statuses
    "HOLD",
    "CONFIRMED",
    "CANCELLED",
    "EXPIRED",
    # Database utilities
    "utc_now",
    "init_db",
    "create_tables",
    "get_db_session",
    "get_db",
    # Pydantic schemas
    "HoldItem",
    "HoldRequest",
    "HoldResponse",
    "ReservationResponse",
    "WebhookAck",
]
