#!/usr/bin/env python3
"""Database bootstrap: wait for the database, then `alembic upgrade head`.

Run before starting the API. If migrations fail we exit non-zero rather than
serve requests against an unknown schema.
"""

import logging
import os
import sys
import time

from core.database import check_db_connection
from core.logging import setup_logging

logger = logging.getLogger("run_migrations")


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(here, "alembic"))
    return cfg


def wait_for_db(attempts: int = 30, delay_s: float = 2.0) -> bool:
    for attempt in range(1, attempts + 1):
        if check_db_connection():
            return True
        logger.info(f"Database not ready (attempt {attempt}/{attempts}), retrying in {delay_s}s")
        time.sleep(delay_s)
    return False


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def main() -> int:
    setup_logging()
    if not wait_for_db():
        logger.error("Database never became available; aborting")
        return 1
    try:
        alembic_upgrade_head()
    except Exception:
        logger.exception("Alembic upgrade failed")
        return 1
    logger.info("Database schema is at head")
    return 0


if __name__ == "__main__":
    sys.exit(main())
