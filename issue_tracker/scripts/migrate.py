from __future__ import annotations

import logging
import os
import subprocess
import time

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError

from issue_tracker.core.config import settings
from issue_tracker.core.logging_config import setup_logging

logger = logging.getLogger("issue_tracker.migrate")


def wait_for_db(engine, timeout_s: int = 60) -> None:
    """Wait until the database is accepting connections."""
    start = time.time()
    delay = 1.0

    while True:
        try:
            with engine.begin() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError:
            if time.time() - start > timeout_s:
                raise
            logger.info("Database not ready, retrying in %.1fs", delay)
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)


def run(cmd: list[str]) -> int:
    p = subprocess.run(cmd, check=False)
    return p.returncode


def main() -> int:
    setup_logging()
    dsn = os.getenv("DATABASE_DSN") or settings.DATABASE_DSN
    engine = create_engine(dsn, future=True, pool_pre_ping=True)

    wait_for_db(engine, timeout_s=int(os.getenv("DB_WAIT_TIMEOUT", "90")))

    tables = set(inspect(engine).get_table_names())
    engine.dispose()

    if "alembic_version" not in tables and "submissions" in tables:
        # Schema created outside alembic (e.g. create_all): adopt it.
        logger.info("Untracked schema found; stamping head")
        return run(["alembic", "stamp", "head"])

    rc = run(["alembic", "upgrade", "head"])
    if rc != 0:
        logger.error("alembic upgrade failed with exit code %d", rc)
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
