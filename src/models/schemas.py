"""
Pydantic models for request validation and response serialization.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict


class HoldItem(BaseModel):
    """
    A requested menu line item.

    Only the item id and quantity are accepted; any price the client sends
    is dropped, the total is always priced from the menu catalog.
    """
    item_id: str = Field(..., min_length=1, max_length=64, description="Menu item id")
    quantity: int = Field(1, ge=1, le=100, description="Number of units")

    model_config = ConfigDict(extra="ignore")


class HoldRequest(BaseModel):
    """
    Pydantic model for validating incoming hold requests.
    """
    restaurant_id: str = Field(..., min_length=1, max_length=64, description="Restaurant id")
    event_id: str = Field(..., min_length=1, max_length=64, description="Event id")
    slot_id: str = Field(..., min_length=1, max_length=64, description="Slot id")
    party_size: int = Field(..., ge=1, description="Number of guests")
    items: List[HoldItem] = Field(default_factory=list, description="Pre-ordered menu items")

    @field_validator("restaurant_id", "event_id", "slot_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject ids that are only whitespace."""
        if not v.strip():
            raise ValueError("Identifier cannot be blank")
        return v.strip()

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "restaurant_id": "r_riverside",
                "event_id": "ev_new_year",
                "slot_id": "slot_2000",
                "party_size": 4,
                "items": [
                    {"item_id": "tasting_menu", "quantity": 4},
                    {"item_id": "wine_pairing", "quantity": 2}
                ]
            }
        }
    )


class HoldResponse(BaseModel):
    """
    Pydantic model for the result of a successful hold.
    """
    reservation_id: str
    assigned_table_ids: List[str]
    total_amount: int
    currency: str
    payment_client_secret: Optional[str]
    hold_expires_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "reservation_id": "5f1c9a0e2b7d4c3e8a6f1b2c3d4e5f60",
                "assigned_table_ids": ["t_window_4"],
                "total_amount": 18000,
                "currency": "gbp",
                "payment_client_secret": "pi_123_secret_456",
                "hold_expires_at": "2025-12-31T19:10:00"
            }
        }
    )


class ReservationResponse(BaseModel):
    """
    Pydantic model for formatting reservation data in API responses.
    """
    id: str
    reservation_number: Optional[str]
    restaurant_id: str
    event_id: str
    slot_id: str
    party_size: int
    assigned_table_ids: List[str]
    status: str
    hold_expires_at: Optional[datetime]
    total_amount: int
    currency: str
    created_at: datetime
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    slot_start_at: datetime
    slot_end_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""
    received: bool = True
