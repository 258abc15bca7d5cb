from __future__ import annotations

import time
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront.database import engine


def check_database_health() -> Dict[str, Any]:
    """Attempt a lightweight DB query to ensure connectivity."""
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return {"status": "DOWN", "detail": str(exc.__class__.__name__)}
    return {"status": "UP", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}
