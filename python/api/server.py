"""
FastAPI Documents View API Server

Provides REST API endpoints for the documents back office: document list
and detail, cascading metadata, processing, trash/restore and history.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api import documents, history, metadata
from api.dependencies import CONFIG_PATH, get_app_security_logger
from api.middleware import (
    ActionAuditMiddleware,
    MaintenanceModeMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    maintenance_enabled,
    setup_cors,
    setup_exception_handlers,
)
from api.models import HealthResponse
from config_manager import ConfigurationError, get_config
from database.connection import close_db, get_db_provider, init_db
from database.monitoring import check_health
from database.repositories import AuditRepository
from log_utils import setup_logging
from services.rate_limiter import RateLimitPolicy

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
API_VERSION = "1.0.0"

# Global state
_config = get_config(CONFIG_PATH)
_startup_time: Optional[datetime] = None

rate_limit_policy = RateLimitPolicy(_config.rate_limits)

# Create FastAPI application
app = FastAPI(
    title="Documents View API",
    description="Back office API for viewing, classifying and processing insurance documents",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)
app.state.rate_limit_policy = rate_limit_policy
app.state.security_logger = get_app_security_logger()

# Setup middleware (last added runs first)
app.add_middleware(ActionAuditMiddleware, config=_config)
app.add_middleware(
    RateLimitMiddleware,
    policy=rate_limit_policy,
    security_logger=app.state.security_logger,
)
app.add_middleware(MaintenanceModeMiddleware, config=_config.maintenance)
app.add_middleware(
    RequestLoggingMiddleware,
    security_logger=app.state.security_logger,
    trusted_proxies=rate_limit_policy.trusted_proxies,
)
setup_cors(app)
setup_exception_handlers(app)

app.include_router(documents.router)
app.include_router(history.router)
app.include_router(metadata.router)


@app.on_event("startup")
async def startup():
    """Configure logging, connect to the database and seed action types."""
    global _startup_time

    setup_logging(_config.logging)
    logger.info("Starting Documents View API...")
    start_time = time.time()

    try:
        provider = init_db(_config.database)
        provider.create_tables()
        with provider.session_scope() as session:
            action_types = AuditRepository(session).ensure_action_types()

        _startup_time = datetime.now(timezone.utc)
        logger.info(
            "API ready: %d action types available, started in %.2f seconds",
            len(action_types),
            time.time() - start_time,
        )

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Documents View API...")
    close_db()


@app.get(
    "/api/health-check",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database health",
)
def health_check():
    """Return health status including database latency. Always returns HTTP 200."""
    provider = get_db_provider()
    if not provider._initialized:
        provider.init()

    db_health = check_health(provider.engine, provider.session_factory)

    uptime = None
    if _startup_time is not None:
        uptime = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    return HealthResponse(
        status="healthy" if db_health.healthy else "degraded",
        version=API_VERSION,
        database=db_health.to_dict(),
        maintenance=maintenance_enabled(_config.maintenance),
        uptime_seconds=uptime,
    )


@app.get("/metrics", include_in_schema=False)
def metrics():
    """Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
