"""
Read-only lookups of slots, tables and menu prices.
"""
from dataclasses import dataclass
from typing import Dict, List, Sequence

from loguru import logger
from sqlalchemy.orm import Session

from models.database import Slot, RestaurantTable, MenuItem
from models.schemas import HoldItem
from error_handling.exceptions import NotFoundError, ValidationError


@dataclass(frozen=True)
class PricedLine:
    item_id: str
    quantity: int
    unit_price: int

    @property
    def amount(self) -> int:
        return self.unit_price * self.quantity


def get_slot(session: Session, slot_id: str) -> Slot:
    """
    Fetch a slot by id.

    Raises:
        NotFoundError: If the slot does not exist
    """
    slot = session.get(Slot, slot_id)
    if slot is None:
        raise NotFoundError("slot", slot_id)
    return slot


def get_active_tables(session: Session, restaurant_id: str) -> List[RestaurantTable]:
    """Return the restaurant's active tables."""
    return session.query(RestaurantTable).filter(
        RestaurantTable.restaurant_id == restaurant_id,
        RestaurantTable.is_active.is_(True)
    ).all()


def get_unit_prices(session: Session, restaurant_id: str, item_ids: Sequence[str]) -> Dict[str, int]:
    """
    Look up unit prices (minor currency units) for the given menu items.

    Unknown and inactive items, and items on another restaurant's menu, are
    absent from the result.
    """
    if not item_ids:
        return {}
    rows = session.query(MenuItem).filter(
        MenuItem.restaurant_id == restaurant_id,
        MenuItem.id.in_(set(item_ids)),
        MenuItem.is_active.is_(True)
    ).all()
    return {row.id: row.price for row in rows}


def price_items(session: Session, restaurant_id: str, items: Sequence[HoldItem]) -> List[PricedLine]:
    """
    Price requested line items from the restaurant's menu.

    Args:
        session: Database session
        restaurant_id: Restaurant whose menu is charged
        items: Validated line items (ids and quantities only)

    Returns:
        Priced lines in request order

    Raises:
        ValidationError: If any item is unknown or not on this restaurant's menu
    """
    prices = get_unit_prices(session, restaurant_id, [item.item_id for item in items])

    missing = sorted({item.item_id for item in items if item.item_id not in prices})
    if missing:
        raise ValidationError(
            f"Unknown menu items: {', '.join(missing)}",
            user_message="One or more menu items are not available.",
            field="items",
            value=missing
        )

    lines = [PricedLine(item.item_id, item.quantity, prices[item.item_id]) for item in items]
    logger.debug(f"Priced {len(lines)} line items, total={sum(line.amount for line in lines)}")
    return lines
