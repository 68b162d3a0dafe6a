"""
Loguru setup for the reservation service.

Two streams matter operationally: the console (or JSON in production) and
the reservation audit file, which records every state change of a
reservation and is kept for a year.
"""
import sys
import time
import functools
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from loguru import logger

AUDIT_CATEGORY = "RESERVATION"

CONSOLE_FORMATS = {
    "simple": "<level>{level: <8}</level> | {message}",
    "detailed": (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{line}</cyan> | {extra} | <level>{message}</level>"
    ),
}

# environment -> (default level, console format, audit file enabled)
ENVIRONMENT_PROFILES = {
    "production": ("INFO", "json", True),
    "development": ("DEBUG", "detailed", True),
    "test": ("WARNING", "simple", False),
}


def _is_audit_record(record: Dict[str, Any]) -> bool:
    return record["extra"].get("category") == AUDIT_CATEGORY


def configure_logging(
    log_level: str = "INFO",
    format_type: str = "detailed",
    audit_dir: Optional[str] = "logs"
) -> None:
    """
    Replace loguru's default handler with the service sinks.

    Args:
        log_level: Minimum console level
        format_type: "simple", "detailed" or "json" (serialized records)
        audit_dir: Directory for the reservation audit log, or None to skip it
    """
    logger.remove()

    if format_type == "json":
        logger.add(sys.stderr, level=log_level, serialize=True, diagnose=False)
    else:
        logger.add(
            sys.stderr,
            level=log_level,
            format=CONSOLE_FORMATS.get(format_type, CONSOLE_FORMATS["detailed"]),
            colorize=True,
            backtrace=True,
            diagnose=False
        )

    if audit_dir:
        Path(audit_dir).mkdir(parents=True, exist_ok=True)
        logger.add(
            Path(audit_dir) / "reservation_audit_{time:YYYY-MM-DD}.log",
            level="INFO",
            format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {message}",
            filter=_is_audit_record,
            rotation="00:00",
            retention="1 year",
            compression="zip"
        )


def init_logging(environment: str = "development", log_level: Optional[str] = None) -> None:
    """
    Configure logging from the ENVIRONMENT profile, honouring LOG_LEVEL.
    """
    default_level, format_type, audit = ENVIRONMENT_PROFILES.get(
        environment, ENVIRONMENT_PROFILES["development"]
    )
    level = (log_level or default_level).upper()
    configure_logging(level, format_type, "logs" if audit else None)
    logger.info(f"Logging initialized: environment={environment} level={level} audit={audit}")


def log_reservation_event(
    event_type: str,
    reservation_id: Optional[str] = None,
    user_id: Optional[str] = None,
    details: Optional[dict] = None
) -> None:
    """
    Write one line to the reservation audit trail.

    event_type is one of HOLD_CREATED, CONFIRMED, CANCELLED, EXPIRED.
    """
    logger.bind(category=AUDIT_CATEGORY, reservation_id=reservation_id).info(
        f"{event_type} reservation={reservation_id} user={user_id} {details or {}}"
    )


@contextmanager
def log_api_call(service: str, operation: str, **details: Any) -> Iterator[Dict[str, Any]]:
    """
    Time an outbound provider call and log its outcome.

    The yielded dict can be extended with details learned from the response.
    A failure is logged at WARNING with the exception type and re-raised.

    Example:
        with log_api_call("stripe", "cancel_payment_intent", intent_id=intent_id):
            client.payment_intents.cancel(intent_id)
    """
    start = time.monotonic()
    call = logger.bind(category="API", service=service, operation=operation)
    try:
        yield details
    except Exception as e:
        call.warning(
            f"{service}.{operation} failed after {time.monotonic() - start:.3f}s: "
            f"{type(e).__name__} {details}"
        )
        raise
    call.info(f"{service}.{operation} ok in {time.monotonic() - start:.3f}s {details}")


def log_performance(operation_name: Optional[str] = None):
    """
    Decorator recording how long a service operation took.

    Successful calls log at DEBUG; failures log at WARNING and propagate.
    """
    def decorator(func):
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.monotonic()
            outcome = "ok"
            try:
                return func(*args, **kwargs)
            except Exception as e:
                outcome = type(e).__name__
                raise
            finally:
                elapsed = time.monotonic() - start
                level = "DEBUG" if outcome == "ok" else "WARNING"
                logger.bind(category="PERFORMANCE").log(level, f"{name} {outcome} in {elapsed:.3f}s")

        return wrapper
    return decorator
