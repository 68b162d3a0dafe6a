"""
Per-restaurant optimistic version counter.

A transaction that may make a table blocking reads the restaurant's ledger
version first, does its overlap scan and writes, then bumps the version with
a compare-and-set UPDATE. If another transaction bumped it in between, the
UPDATE matches no row and StaleLedgerError tells the caller to roll back and
start over with fresh data.
"""
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.database import RestaurantLedger, utc_now


class StaleLedgerError(Exception):
    """Another transaction committed against the same restaurant first."""

    def __init__(self, restaurant_id: str, seen_version: int):
        super().__init__(
            f"Ledger for restaurant {restaurant_id} moved past version {seen_version}"
        )
        self.restaurant_id = restaurant_id
        self.seen_version = seen_version


def read_ledger_version(session: Session, restaurant_id: str) -> int:
    """
    Read the current ledger version, creating the row on first use.

    Raises:
        StaleLedgerError: If another transaction created the row first
    """
    ledger = session.get(RestaurantLedger, restaurant_id, populate_existing=True)
    if ledger is None:
        session.add(RestaurantLedger(restaurant_id=restaurant_id, version=0, updated_at=utc_now()))
        try:
            session.flush()
        except IntegrityError as e:
            # Lost the primary key race on the ledger row
            raise StaleLedgerError(restaurant_id, -1) from e
        return 0
    return ledger.version


def bump_ledger_version(
    session: Session,
    restaurant_id: str,
    seen_version: int,
    now: datetime
) -> int:
    """
    Compare-and-set the ledger version.

    Returns:
        The new version

    Raises:
        StaleLedgerError: If the version is no longer `seen_version`
    """
    result = session.execute(
        update(RestaurantLedger)
        .where(
            RestaurantLedger.restaurant_id == restaurant_id,
            RestaurantLedger.version == seen_version,
        )
        .values(version=seen_version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleLedgerError(restaurant_id, seen_version)
    return seen_version + 1
