"""Block until the configured database accepts connections (container entrypoint helper)."""
import logging
import os
import sys
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from storefront.config import Config

MAX_ATTEMPTS = int(os.environ.get("DB_WAIT_ATTEMPTS", "30"))
SLEEP_SECONDS = float(os.environ.get("DB_WAIT_INTERVAL", "2"))

logger = logging.getLogger("wait_for_db")


def wait_for_database(url: str = Config.DATABASE_URL, attempts: int = MAX_ATTEMPTS, interval: float = SLEEP_SECONDS) -> bool:
    engine = create_engine(url, pool_pre_ping=True)
    try:
        for attempt in range(1, attempts + 1):
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                logger.info("Database connection established")
                return True
            except OperationalError as exc:
                logger.warning("Attempt %d/%d failed: %s", attempt, attempts, exc.__class__.__name__)
                time.sleep(interval)
    finally:
        engine.dispose()
    return False


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="[wait_for_db] %(message)s")
    if not wait_for_database():
        logger.error("Database not reachable after %d attempts", MAX_ATTEMPTS)
        sys.exit(1)


if __name__ == "__main__":
    main()
