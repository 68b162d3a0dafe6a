"""
Tests for error mapping, database error translation, logging and settings.
"""
from unittest.mock import MagicMock

import pytest
from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError

from config import Settings, get_settings, reset_settings
from error_handling import (
    AuthError,
    BookingSystemError,
    ConfigurationError,
    ConflictError,
    DatabaseConnectionError,
    DatabaseError,
    GatewayError,
    NoTablesAvailableError,
    NotFoundError,
    ValidationError,
    WebhookVerificationError,
    error_response,
    get_status_code,
    configure_logging,
    handle_database_errors,
    init_logging,
    log_api_call,
    log_performance,
    log_reservation_event,
)


class TestStatusCodes:
    """Test HTTP status mapping."""

    @pytest.mark.parametrize("error, status", [
        (ValidationError("bad"), 400),
        (WebhookVerificationError("bad signature"), 400),
        (AuthError(), 401),
        (NotFoundError("reservation", "x"), 404),
        (ConflictError("lost race"), 409),
        (NoTablesAvailableError(party_size=12), 409),
        (GatewayError("down"), 502),
        (DatabaseConnectionError(), 503),
        (DatabaseError("duplicate key", error_type="constraint", retry_possible=False), 500),
        (ConfigurationError("STRIPE_WEBHOOK_SECRET"), 500),
        (RuntimeError("boom"), 500),
    ])
    def test_mapping(self, error, status):
        assert get_status_code(error) == status

    def test_error_body(self):
        error = NoTablesAvailableError(party_size=12)
        assert error_response(error) == {
            "error": "no_tables_available",
            "message": error.user_message,
        }

    def test_unknown_error_body(self):
        assert error_response(RuntimeError("secret detail")) == {
            "error": "internal",
            "message": "Internal server error",
        }

    def test_user_message_defaults_to_message(self):
        assert BookingSystemError("plain").user_message == "plain"


class Repository:
    def __init__(self, exc):
        self.session = MagicMock()
        self.exc = exc

    @handle_database_errors("load")
    def load(self):
        raise self.exc


class TestHandleDatabaseErrors:
    """Test translation of SQLAlchemy failures."""

    def test_operational_error_translated(self):
        repo = Repository(OperationalError("SELECT 1", {}, Exception("connection reset")))
        with pytest.raises(DatabaseConnectionError) as exc_info:
            repo.load()
        assert exc_info.value.context["operation"] == "load"
        repo.session.rollback.assert_called_once()

    def test_integrity_error_translated(self):
        """Test that a constraint violation becomes a non-retryable DatabaseError."""
        repo = Repository(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
        with pytest.raises(DatabaseError) as exc_info:
            repo.load()
        assert not isinstance(exc_info.value, DatabaseConnectionError)
        assert exc_info.value.error_type == "constraint"
        assert exc_info.value.retry_possible is False
        repo.session.rollback.assert_called_once()

    def test_service_errors_pass_through(self):
        repo = Repository(NotFoundError("slot", "s9"))
        with pytest.raises(NotFoundError):
            repo.load()
        repo.session.rollback.assert_called_once()


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        settings = Settings(_env_file=None)
        assert settings.currency == "gbp"
        assert settings.hold_minutes == 10
        assert settings.hold_max_attempts == 4
        assert settings.expiry_sweep_interval_seconds == 60
        assert settings.stripe_webhook_secret is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("HOLD_MINUTES", "15")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_env")
        settings = Settings(_env_file=None)
        assert settings.hold_minutes == 15
        assert settings.stripe_webhook_secret == "whsec_env"

    def test_database_url_required(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_get_settings_cached(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        reset_settings()
        try:
            assert get_settings() is get_settings()
        finally:
            reset_settings()


class TestLogging:
    """Test loguru sinks and logging helpers."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        yield
        configure_logging("WARNING", "simple", audit_dir=None)

    def test_audit_file_holds_only_reservation_events(self, tmp_path):
        """Test that the audit log receives state changes and nothing else."""
        configure_logging("DEBUG", "simple", audit_dir=str(tmp_path))

        logger.info("routine message")
        log_reservation_event("CONFIRMED", reservation_id="res-1", user_id="user-1")
        logger.remove()

        (audit_file,) = tmp_path.glob("reservation_audit_*.log")
        content = audit_file.read_text()
        assert "CONFIRMED reservation=res-1 user=user-1" in content
        assert "routine message" not in content

    def test_test_profile_writes_no_files(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        init_logging("test")
        log_reservation_event("EXPIRED", reservation_id="res-1")
        assert list(tmp_path.iterdir()) == []

    def test_api_call_failure_logged_and_raised(self):
        """Test that a failed provider call is logged at WARNING and re-raised."""
        messages = []
        configure_logging("WARNING", "simple", audit_dir=None)
        logger.add(messages.append, level="WARNING", format="{message}")

        with pytest.raises(TimeoutError):
            with log_api_call("stripe", "cancel_payment_intent", intent_id="pi_1"):
                raise TimeoutError("read timed out")

        assert len(messages) == 1
        assert "stripe.cancel_payment_intent failed" in messages[0]
        assert "TimeoutError" in messages[0]

    def test_performance_logged_on_failure(self):
        messages = []
        configure_logging("WARNING", "simple", audit_dir=None)
        logger.add(messages.append, level="WARNING", format="{message}")

        @log_performance("load_menu")
        def load_menu():
            raise NotFoundError("menu", "r9")

        with pytest.raises(NotFoundError):
            load_menu()
        assert messages[0].startswith("load_menu NotFoundError in ")
