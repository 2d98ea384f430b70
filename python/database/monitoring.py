"""
Prometheus instrumentation for the Documents View database layer

Repository queries are timed through the timed_query decorator; audit
actions and rate limiter rejections are counted so the /metrics endpoint
shows how documents are being worked. Slow queries are logged.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 1000.0


# ============================================
# PROMETHEUS METRICS
# ============================================

db_query_duration = Histogram(
    'documents_view_db_query_duration_seconds',
    'Repository query duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

db_slow_queries_total = Counter(
    'documents_view_db_slow_queries_total',
    'Repository queries slower than the slow query threshold',
    ['operation']
)

document_actions_total = Counter(
    'documents_view_document_actions_total',
    'Audit actions recorded against documents',
    ['action_type']
)

rate_limit_rejections_total = Counter(
    'documents_view_rate_limit_rejections_total',
    'Requests rejected by the rate limiter',
    ['group']
)

db_pool_checked_out = Gauge(
    'documents_view_db_pool_checked_out',
    'Database connections currently checked out'
)


# ============================================
# QUERY TIMING
# ============================================

@contextmanager
def query_timer(operation: str):
    """Time a repository query and log it when slow."""
    start = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start
        db_query_duration.labels(operation=operation, status=status).observe(duration)
        if duration * 1000 > SLOW_QUERY_THRESHOLD_MS:
            db_slow_queries_total.labels(operation=operation).inc()
            logger.warning(f"SLOW QUERY: {operation} took {duration * 1000:.2f}ms")


def timed_query(operation: str):
    """
    Decorator form of query_timer.

    Usage:
        @timed_query("list_documents")
        def list_documents(self, filters):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator


def record_document_action(action_type: str) -> None:
    document_actions_total.labels(action_type=action_type).inc()


def record_rate_limit_rejection(group: str) -> None:
    rate_limit_rejections_total.labels(group=group).inc()


# ============================================
# HEALTH
# ============================================

@dataclass
class HealthStatus:
    """Database reachability as reported by /api/health-check"""
    healthy: bool
    latency_ms: float
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'error': self.error,
            'checked_at': self.checked_at.isoformat()
        }


def check_health(engine, session_factory) -> HealthStatus:
    """Run SELECT 1 and refresh the pool gauge."""
    start = time.perf_counter()
    session = session_factory()
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return HealthStatus(False, (time.perf_counter() - start) * 1000, error=str(e))
    finally:
        session.close()

    # StaticPool (SQLite tests) keeps no checkout count
    if hasattr(engine.pool, "checkedout"):
        db_pool_checked_out.set(engine.pool.checkedout())
    return HealthStatus(True, (time.perf_counter() - start) * 1000)
