"""
Main entry point for the event table reservation service.

Initializes logging and the database, then serves the reservation API with
uvicorn. The expiry sweeper runs inside the app lifespan.
"""
import os
import sys

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from api import create_app
from config import get_settings
from error_handling import BookingSystemError, init_logging
from models.database import create_tables, init_db_with_retry


def main():
    """
    Main entry point for the reservation API.
    """
    load_dotenv()

    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    init_logging(settings.environment, settings.log_level)
    logger.info("=" * 80)
    logger.info("Event Table Reservation Service")
    logger.info("=" * 80)

    try:
        init_db_with_retry(settings.database_url)
        create_tables()
    except BookingSystemError as e:
        logger.error(f"Failed to initialize database: {e}")
        return 2

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))

    try:
        uvicorn.run(create_app(settings), host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        return 130
    finally:
        logger.info("Application shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
