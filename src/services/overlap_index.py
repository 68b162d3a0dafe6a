"""
Overlap Index - which tables are already committed for a time window.

Scans every CONFIRMED or HOLD reservation of the restaurant; there is no
secondary index by time range, so cost grows linearly with the restaurant's
active reservation count.
"""
from datetime import datetime
from typing import Iterable, Optional, Set

from loguru import logger
from sqlalchemy.orm import Session

from models.database import Reservation, HOLD, CONFIRMED, utc_now
from services.expiry import is_blocking


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


def collect_busy_tables(
    reservations: Iterable[Reservation],
    start: datetime,
    end: datetime,
    now: datetime,
    exclude_reservation_id: Optional[str] = None
) -> Set[str]:
    """
    Union the table ids of reservations that block [start, end) at `now`.

    Rows without a denormalized window are skipped.
    """
    busy: Set[str] = set()
    for reservation in reservations:
        if reservation.id == exclude_reservation_id:
            continue
        if reservation.slot_start_at is None or reservation.slot_end_at is None:
            continue
        if not is_blocking(reservation, now):
            continue
        if overlaps(start, end, reservation.slot_start_at, reservation.slot_end_at):
            busy.update(reservation.assigned_table_ids or [])
    return busy


def busy_table_ids(
    session: Session,
    restaurant_id: str,
    start: datetime,
    end: datetime,
    now: Optional[datetime] = None,
    exclude_reservation_id: Optional[str] = None
) -> Set[str]:
    """
    Compute the busy set for a restaurant and a candidate window.

    Args:
        session: Database session
        restaurant_id: Restaurant to scan
        start: Window start (inclusive)
        end: Window end (exclusive)
        now: Reference time for hold expiry, defaults to current UTC time
        exclude_reservation_id: Reservation to leave out of the scan

    Returns:
        Set of table ids unavailable for the window
    """
    now = now or utc_now()
    candidates = session.query(Reservation).filter(
        Reservation.restaurant_id == restaurant_id,
        Reservation.status.in_([CONFIRMED, HOLD])
    ).all()

    busy = collect_busy_tables(candidates, start, end, now, exclude_reservation_id)
    logger.debug(
        f"Overlap scan restaurant={restaurant_id} window=[{start}, {end}) "
        f"scanned={len(candidates)} busy={sorted(busy)}"
    )
    return busy
