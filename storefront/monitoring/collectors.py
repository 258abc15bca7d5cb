from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Dict, Optional

import psutil
from sqlalchemy import text
from sqlalchemy.engine import Engine

from storefront.observability import http_traffic_totals

logger = logging.getLogger(__name__)


def collect_system_metrics(disk_path: str = "/") -> Dict[str, float]:
    """Host CPU, memory and disk utilisation in percent."""
    return {
        "server_cpu_usage": round(psutil.cpu_percent(interval=None), 1),
        "server_memory_usage": round(psutil.virtual_memory().percent, 1),
        "server_disk_space": round(psutil.disk_usage(disk_path).percent, 1),
    }


class ApiMetricsCollector:
    """
    API traffic since the previous collection, derived from the request hooks'
    cumulative counters. The first call covers everything recorded so far.
    """

    def __init__(self) -> None:
        self._previous: Optional[Dict[str, float]] = None
        self._lock = Lock()

    def __call__(self) -> Dict[str, float]:
        current = http_traffic_totals()
        with self._lock:
            previous = self._previous or {key: 0.0 for key in current}
            self._previous = current

        requests = max(0.0, current["requests"] - previous["requests"])
        errors = max(0.0, current["errors"] - previous["errors"])
        latency_count = max(0, current["latency_count"] - previous["latency_count"])
        latency_sum = max(0.0, current["latency_sum_ms"] - previous["latency_sum_ms"])

        return {
            "api_response_time": round(latency_sum / latency_count, 2) if latency_count else 0.0,
            "api_error_rate": round(errors / requests * 100, 2) if requests else 0.0,
            "api_request_count": int(requests),
        }


class DatabaseMetricsCollector:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def __call__(self) -> Dict[str, float]:
        started = time.perf_counter()
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        query_time = (time.perf_counter() - started) * 1000

        pool = self.engine.pool
        # Not every pool implementation tracks checkouts
        checked_out = pool.checkedout() if hasattr(pool, "checkedout") else 0
        return {
            "db_query_time": round(query_time, 2),
            "db_connections": checked_out,
        }
