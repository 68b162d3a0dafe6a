"""
FastAPI application factory.

Wires the reservation routes, maps service errors to JSON responses and runs
the expiry sweeper for the lifetime of the app.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from config import Settings, get_settings
from error_handling.exceptions import BookingSystemError, ValidationError
from error_handling.handlers import error_response, get_status_code, log_error
from models.database import get_db_session
from services.expiry import ExpirySweeper
from .routes import router


def create_app(settings: Optional[Settings] = None, start_sweeper: bool = True) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Application settings (defaults to the global settings)
        start_sweeper: Run the HOLD -> EXPIRED job in the background

    Returns:
        Configured FastAPI instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        if start_sweeper:
            sweeper = ExpirySweeper(get_db_session, settings.expiry_sweep_interval_seconds)
            sweeper.start()
        app.state.sweeper = sweeper
        logger.info(f"Reservation API ready ({settings.environment})")
        yield
        if sweeper is not None:
            sweeper.shutdown()

    app = FastAPI(title="Event Table Reservations", lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(BookingSystemError)
    async def booking_error_handler(request: Request, exc: BookingSystemError):
        log_error(exc, context={"path": request.url.path})
        return JSONResponse(status_code=get_status_code(exc), content=error_response(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else None
        error = ValidationError(f"Bad input: {len(errors)} validation errors", field=field)
        log_error(error, context={"path": request.url.path}, severity="WARNING")
        return JSONResponse(status_code=400, content=error_response(error))

    app.include_router(router)
    return app
