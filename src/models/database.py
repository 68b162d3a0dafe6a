"""
SQLAlchemy database models and session management for the event table reservation service.
"""
import os
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional
from loguru import logger

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
    JSON,
    event,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, Session, sessionmaker
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError

from error_handling.exceptions import DatabaseError

# Create declarative base
Base = declarative_base()

# Database engine and session factory (initialized by init_db)
engine: Engine | None = None
SessionLocal: sessionmaker | None = None


# Reservation statuses
HOLD = "HOLD"
CONFIRMED = "CONFIRMED"
CANCELLED = "CANCELLED"
EXPIRED = "EXPIRED"
RESERVATION_STATUSES = (HOLD, CONFIRMED, CANCELLED, EXPIRED)


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the storage convention for every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class Slot(Base):
    """
    Slot model representing a fixed time window within an event.
    """
    __tablename__ = "slots"

    id = Column(String(64), primary_key=True, default=new_id)
    event_id = Column(String(64), nullable=False)
    restaurant_id = Column(String(64), nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_slot_window"),
        Index("ix_slot_event", "event_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Slot(id={self.id}, event_id={self.event_id}, "
            f"start_at={self.start_at}, end_at={self.end_at}, is_active={self.is_active})>"
        )


class RestaurantTable(Base):
    """
    RestaurantTable model representing a bookable physical table.

    Tables sharing a join_group_id may be pushed together to seat one party.
    """
    __tablename__ = "restaurant_tables"

    id = Column(String(64), primary_key=True, default=new_id)
    restaurant_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    seats = Column(Integer, nullable=False)
    join_group_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("seats > 0", name="ck_table_seats_positive"),
        Index("ix_table_restaurant_active", "restaurant_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<RestaurantTable(id={self.id}, name='{self.name}', seats={self.seats}, "
            f"join_group_id={self.join_group_id}, is_active={self.is_active})>"
        )


class MenuItem(Base):
    """
    MenuItem model holding the trusted unit price (minor currency units).
    """
    __tablename__ = "menu_items"

    id = Column(String(64), primary_key=True, default=new_id)
    restaurant_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_menu_item_price"),
    )

    def __repr__(self) -> str:
        return f"<MenuItem(id={self.id}, name='{self.name}', price={self.price})>"


class Reservation(Base):
    """
    Reservation model, the central mutable entity.

    slot_start_at/slot_end_at are copied from the slot at creation so
    overlap checks never join against slots.
    """
    __tablename__ = "reservations"

    id = Column(String(64), primary_key=True, default=new_id)
    reservation_number = Column(String(32), nullable=True)
    user_id = Column(String(128), nullable=False)
    restaurant_id = Column(String(64), nullable=False)
    event_id = Column(String(64), nullable=False)
    slot_id = Column(String(64), nullable=False)
    party_size = Column(Integer, nullable=False)
    assigned_table_ids = Column(JSON, nullable=False, default=list)
    status = Column(
        Enum(*RESERVATION_STATUSES, name="reservation_status"),
        nullable=False,
        default=HOLD,
    )
    hold_expires_at = Column(DateTime, nullable=True)
    total_amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    payment_intent_id = Column(String(255), nullable=True)
    slot_start_at = Column(DateTime, nullable=False)
    slot_end_at = Column(DateTime, nullable=False)

    items = relationship(
        "ReservationItem",
        back_populates="reservation",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("reservation_number", name="uq_reservation_number"),
        CheckConstraint("party_size >= 1", name="ck_reservation_party_size"),
        CheckConstraint("total_amount >= 0", name="ck_reservation_total"),
        # Overlap scans filter on restaurant + status
        Index("ix_reservation_restaurant_status", "restaurant_id", "status"),
        Index("ix_reservation_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, status='{self.status}', "
            f"restaurant_id={self.restaurant_id}, tables={self.assigned_table_ids}, "
            f"party_size={self.party_size}, number={self.reservation_number})>"
        )


class ReservationItem(Base):
    """
    ReservationItem model recording a priced line item of a reservation.
    """
    __tablename__ = "reservation_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(String(64), ForeignKey("reservations.id"), nullable=False)
    menu_item_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)

    reservation = relationship("Reservation", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_reservation_item_quantity"),
        Index("ix_reservation_item_reservation", "reservation_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReservationItem(reservation_id={self.reservation_id}, "
            f"menu_item_id={self.menu_item_id}, quantity={self.quantity})>"
        )


class RestaurantLedger(Base):
    """
    RestaurantLedger model, one row per restaurant.

    Its version counter is bumped (compare-and-set) by every transaction that
    makes a table blocking. Two such transactions racing on the same restaurant
    cannot both commit: the loser's UPDATE matches no row.
    """
    __tablename__ = "restaurant_ledgers"

    restaurant_id = Column(String(64), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<RestaurantLedger(restaurant_id={self.restaurant_id}, version={self.version})>"


def get_database_url() -> str:
    """
    Get database URL from environment variables.

    Returns:
        Database connection string

    Raises:
        ValueError: If DATABASE_URL is not set
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError(
            "DATABASE_URL environment variable is not set. "
            "Please set it to your database connection string."
        )
    return database_url


def init_db(database_url: str | None = None) -> Engine:
    """
    Initialize database engine and session factory.

    Args:
        database_url: Optional database connection string. If not provided,
                     will use DATABASE_URL environment variable.

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ValueError: If database_url is not provided and DATABASE_URL env var is not set
    """
    global engine, SessionLocal

    if database_url is None:
        database_url = get_database_url()

    engine_kwargs = {"echo": False, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs.update(pool_size=5, max_overflow=10)

    engine = create_engine(database_url, **engine_kwargs)

    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )

    return engine


def create_tables() -> None:
    """
    Create all tables in the database.

    Raises:
        RuntimeError: If database engine is not initialized
    """
    if engine is None:
        raise RuntimeError("Database engine not initialized. Call init_db() first.")

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Yields:
        SQLAlchemy Session instance

    Example:
        with get_db_session() as session:
            reservation = session.get(Reservation, reservation_id)

    Raises:
        RuntimeError: If session factory is not initialized
    """
    if SessionLocal is None:
        raise RuntimeError("Session factory not initialized. Call init_db() first.")

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function for getting database sessions in FastAPI routes.

    Yields:
        SQLAlchemy Session instance
    """
    with get_db_session() as session:
        yield session


# ============================================================================
# Connection Pool Events
# ============================================================================

def setup_connection_events(engine: Engine) -> None:
    """
    Set up connection pool event handlers for better error handling.

    Args:
        engine: SQLAlchemy engine instance
    """

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    @event.listens_for(engine, "checkout")
    def receive_checkout(dbapi_conn, connection_record, connection_proxy):
        try:
            cursor = dbapi_conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()
        except Exception as e:
            logger.warning(f"Stale connection detected: {e}. Will be recycled.")
            connection_record.invalidate(e)
            raise DisconnectionError("Connection invalidated")

    @event.listens_for(engine, "close")
    def receive_close(dbapi_conn, connection_record):
        logger.debug("Database connection closed")

    logger.info("Database connection event handlers configured")


def init_db_with_retry(
    database_url: Optional[str] = None,
    max_retries: int = 3,
    retry_delay: float = 2.0
) -> Engine:
    """
    Initialize database with retry logic for initial connection.

    Args:
        database_url: Optional database connection string
        max_retries: Maximum connection attempts
        retry_delay: Delay between attempts (seconds)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        DatabaseError: If connection fails after retries
    """
    delay = retry_delay

    for attempt in range(max_retries + 1):
        try:
            engine = init_db(database_url)
            setup_connection_events(engine)

            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            logger.info("Database initialized successfully")
            return engine

        except Exception as e:
            if attempt < max_retries:
                logger.warning(
                    f"Database initialization failed (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {delay:.2f}s..."
                )
                time.sleep(delay)
                delay *= 2.0
            else:
                logger.error(f"Database initialization failed after {max_retries} retries: {e}")
                raise DatabaseError(
                    f"Database initialization failed after {max_retries} retries",
                    error_type="connection",
                    retry_possible=False,
                    original_error=e
                )
