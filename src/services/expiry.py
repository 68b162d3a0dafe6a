"""
Expiry Policy for HOLD reservations.

Two halves:
- is_blocking(): the lazy rule applied wherever busy tables are computed.
  An expired HOLD never blocks, whether or not the sweep has rewritten it yet.
- sweep_expired_holds() / ExpirySweeper: a scheduled job that moves stale HOLD
  rows to EXPIRED so reservation history reflects the real state.
"""
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.database import Reservation, HOLD, CONFIRMED, EXPIRED, utc_now
from error_handling.logging_config import log_reservation_event

SWEEP_JOB_ID = "expire_stale_holds"


def is_hold_expired(reservation: Reservation, now: datetime) -> bool:
    """A HOLD without an expiry is treated as expired."""
    expires_at = reservation.hold_expires_at
    return expires_at is None or expires_at <= now


def is_blocking(reservation: Reservation, now: datetime) -> bool:
    """
    Whether a reservation currently holds its tables.

    CONFIRMED always blocks; HOLD blocks until its expiry; CANCELLED and
    EXPIRED never block.
    """
    if reservation.status == CONFIRMED:
        return True
    if reservation.status == HOLD:
        return not is_hold_expired(reservation, now)
    return False


def sweep_expired_holds(session: Session, now: Optional[datetime] = None) -> int:
    """
    Transition every HOLD whose expiry has passed to EXPIRED.

    Args:
        session: Database session (committed on success)
        now: Reference time, defaults to current UTC time

    Returns:
        Number of reservations expired
    """
    now = now or utc_now()
    stale = session.query(Reservation).filter(
        Reservation.status == HOLD,
        Reservation.hold_expires_at <= now
    ).with_for_update(skip_locked=True).all()

    for reservation in stale:
        expired_at = reservation.hold_expires_at
        reservation.status = EXPIRED
        reservation.hold_expires_at = None
        log_reservation_event(
            "EXPIRED",
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            details={"hold_expired_at": expired_at.isoformat() if expired_at else None}
        )

    session.commit()
    if stale:
        logger.info(f"Expired {len(stale)} stale holds")
    return len(stale)


class ExpirySweeper:
    """
    Runs sweep_expired_holds on an interval in a background thread.

    Each run opens its own session from the supplied factory.
    """

    def __init__(self, session_factory, interval_seconds: int = 60):
        """
        Args:
            session_factory: Zero-argument callable returning a context manager
                             that yields a Session (e.g. get_db_session)
            interval_seconds: Seconds between sweeps
        """
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.scheduler = BackgroundScheduler()

    def run_once(self) -> int:
        try:
            with self.session_factory() as session:
                return sweep_expired_holds(session)
        except SQLAlchemyError as e:
            logger.warning(f"Expiry sweep failed, will retry next interval: {e}")
            return 0

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self.interval_seconds,
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Expiry sweeper started (every {self.interval_seconds}s)")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Expiry sweeper stopped")
