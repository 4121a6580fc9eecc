#!/usr/bin/env python3
"""Container entrypoint step: wait for the database, then `alembic upgrade head`.

Exits non-zero when the database never comes up or a migration fails, so
the API container does not start against an unknown schema.

    DB_WAIT_RETRIES   attempts before giving up (default 30, one per second)
"""
import logging
import os
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

API_ROOT = Path(__file__).resolve().parent

logger = logging.getLogger("run_migrations")


def alembic_config():
    from alembic.config import Config

    cfg = Config(str(API_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(API_ROOT / "alembic"))
    return cfg


def wait_for_database(retries: int, delay: float = 1.0) -> bool:
    from core.database import check_db_connection

    for attempt in range(1, retries + 1):
        if check_db_connection():
            return True
        logger.info(f"Database unavailable (attempt {attempt}/{retries}); sleeping {delay}s")
        time.sleep(delay)
    return False


def main() -> int:
    from alembic import command

    retries = int(os.getenv("DB_WAIT_RETRIES", "30"))
    if not wait_for_database(retries):
        logger.error(f"Database not ready after {retries} attempts")
        return 1

    try:
        command.upgrade(alembic_config(), "head")
    except Exception:
        logger.exception("Alembic upgrade failed")
        return 1

    logger.info("Migrations applied")
    return 0


if __name__ == "__main__":
    from core.logging import setup_logging

    setup_logging()
    sys.exit(main())
