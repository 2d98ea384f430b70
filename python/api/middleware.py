"""
FastAPI Middleware for the Documents View API

Provides CORS configuration, request logging, rate limiting, maintenance
mode, the document action audit and global error handling.
"""

import os
import re
import time
import fnmatch
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

from config_manager import ConfigManager, ConfigurationError, MaintenanceConfig
from database.connection import get_db_provider
from database.models import ActionTypeName
from database.monitoring import record_rate_limit_rejection
from log_utils import sanitize_for_logging
from security_logger import SecurityLogger
from services.access_policy import AuthorizationError
from services.audit_logger import AuditLogger
from services.metadata_service import MetadataValidationError
from services.rate_limiter import RateLimitPolicy, resolve_client_ip

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
    "http://127.0.0.1:8000",
]

EXPOSED_HEADERS = [
    "X-Request-ID",
    "X-Processing-Time-MS",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
]

AUDIT_ACTION_KEY = "x-audit-action"

LIFECYCLE_ACTIONS = (
    ActionTypeName.PROCESS,
    ActionTypeName.UNPROCESS,
    ActionTypeName.TRASH,
    ActionTypeName.RESTORE,
)


def _build_cors_regex_pattern(allowed_origins: List[str]) -> tuple:
    """Build regex pattern for CORS from allowed origins list.

    Args:
        allowed_origins: List of allowed origins (may include wildcards like *.example.com)

    Returns:
        Tuple of (combined_regex_pattern or None, exact_origins list)
    """
    regex_patterns = []
    exact_origins = []

    for origin in allowed_origins:
        if origin.startswith("https://*."):
            domain = re.escape(origin[len("https://*."):])
            regex_patterns.append(rf"https://[\w-]+\.{domain}")
        else:
            exact_origins.append(origin)

    if not regex_patterns:
        return None, exact_origins

    combined_regex = "|".join(f"({p})" for p in regex_patterns)
    if exact_origins:
        exact_escaped = "|".join(re.escape(o) for o in exact_origins)
        combined_regex = f"({combined_regex})|({exact_escaped})"

    return combined_regex, exact_origins


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the application.

    Origins can be customized via CORS_ORIGINS environment variable
    (comma-separated list of allowed origins). Subdomain wildcards of the
    form https://*.example.com are supported.
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",")]
    else:
        allowed_origins = DEFAULT_CORS_ORIGINS

    combined_regex, exact_origins = _build_cors_regex_pattern(allowed_origins)

    options: Dict[str, Any] = {
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "OPTIONS"],
        "allow_headers": ["*"],
        "expose_headers": EXPOSED_HEADERS,
    }
    if combined_regex:
        app.add_middleware(CORSMiddleware, allow_origin_regex=combined_regex, **options)
    else:
        app.add_middleware(CORSMiddleware, allow_origins=exact_origins, **options)


def _client_key(request: Request, trusted_proxies: Sequence[str] = ()) -> str:
    peer = request.client.host if request.client else "unknown"
    return resolve_client_ip(peer, request.headers.get("X-Forwarded-For"), trusted_proxies)


def _header_user_id(request: Request) -> Optional[int]:
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return user_id
    raw = request.headers.get("X-User-ID", "")
    return int(raw) if raw.strip().isdigit() else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with sanitized inputs and tags security events with its ID."""

    def __init__(
        self,
        app,
        security_logger: Optional[SecurityLogger] = None,
        trusted_proxies: Sequence[str] = ()
    ):
        super().__init__(app)
        self.security_logger = security_logger
        self.trusted_proxies = trusted_proxies

    async def dispatch(self, request: Request, call_next: Callable):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        request.state.request_id = request_id
        request.state.start_time = start_time
        if self.security_logger is not None:
            self.security_logger.set_request_context(
                request_id=request_id,
                user_id=request.headers.get("X-User-ID", ""),
                source_ip=_client_key(request, self.trusted_proxies),
            )

        # Sanitize path to prevent log injection
        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise

        finally:
            if self.security_logger is not None:
                self.security_logger.clear_request_context()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client fixed-window rate limiting by endpoint group."""

    def __init__(self, app, policy: RateLimitPolicy, security_logger: Optional[SecurityLogger] = None):
        super().__init__(app)
        self.policy = policy
        self.security_logger = security_logger

    async def dispatch(self, request: Request, call_next: Callable):
        if not self.policy.enabled or request.method == "OPTIONS":
            return await call_next(request)

        group = self.policy.resolve_group(request.url.path)
        if group is None:
            return await call_next(request)

        client_key = _client_key(request, self.policy.trusted_proxies)
        result = self.policy.hit(group, client_key)

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded: group=%s client=%s path=%s",
                group,
                sanitize_for_logging(client_key),
                sanitize_for_logging(request.url.path),
            )
            record_rate_limit_rejection(group)
            if self.security_logger is not None:
                self.security_logger.log_rate_limit_exceeded(
                    group=group,
                    client_key=client_key,
                    path=request.url.path,
                    retry_after=result.retry_after,
                )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests",
                    "message": "You have exceeded the rate limit for this endpoint.",
                    "retry_after": result.retry_after,
                },
                headers=result.headers(),
            )

        response = await call_next(request)
        for name, value in result.headers().items():
            response.headers[name] = value
        return response


def maintenance_enabled(config: MaintenanceConfig) -> bool:
    """MAINTENANCE_MODE env var when set, otherwise the configured flag."""
    env_value = os.getenv("MAINTENANCE_MODE", "")
    if env_value:
        return env_value.lower() in ("1", "true", "yes", "on")
    return config.enabled


class MaintenanceModeMiddleware(BaseHTTPMiddleware):
    """Answers 503 for everything but the exempt paths while maintenance is on."""

    def __init__(self, app, config: Optional[MaintenanceConfig] = None):
        super().__init__(app)
        self.config = config or MaintenanceConfig()

    @property
    def enabled(self) -> bool:
        return maintenance_enabled(self.config)

    def is_exempt(self, path: str) -> bool:
        path = path.rstrip("/") or "/"
        return any(fnmatch.fnmatchcase(path, pattern) for pattern in self.config.except_paths)

    async def dispatch(self, request: Request, call_next: Callable):
        if not self.enabled or self.is_exempt(request.url.path):
            return await call_next(request)

        logger.info(f"Maintenance mode: rejected {sanitize_for_logging(request.url.path)}")
        return JSONResponse(
            status_code=503,
            content={
                "message": self.config.message,
                "status": "maintenance",
                "retry_after": self.config.retry_after,
                "estimated_completion": self.config.estimated_completion,
                "documents_view_status": "temporarily_unavailable",
            },
            headers={"Retry-After": str(self.config.retry_after)},
        )


def resolve_audit_route(app: FastAPI, scope: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """Audit action declared by the route matching scope, with its path params."""
    for route in app.router.routes:
        if not isinstance(route, APIRoute):
            continue
        match, child_scope = route.matches(scope)
        if match == Match.FULL:
            action = (route.openapi_extra or {}).get(AUDIT_ACTION_KEY)
            return action, child_scope.get("path_params", {})
    return None, {}


class ActionAuditMiddleware(BaseHTTPMiddleware):
    """
    Writes document actions declared by routes to the audit trail.

    A route opts in with openapi_extra={"x-audit-action": "<action type>"}.
    Views are logged before the handler runs, lifecycle actions only after
    a 2xx response. A handler may narrow the action through
    request.state.audit_action (process vs unprocess). Metadata edits are
    logged by MetadataService together with their diff.
    """

    def __init__(self, app, config: Optional[ConfigManager] = None):
        super().__init__(app)
        self.config = config

    def _log(self, action: str, document_id: int, user_id: int) -> None:
        try:
            with get_db_provider().session_scope() as session:
                audit_config = self.config.documents.audit if self.config else None
                audit_logger = AuditLogger(session, audit_config)
                if action == ActionTypeName.VIEW:
                    audit_logger.log_document_view(document_id, user_id)
                elif action == ActionTypeName.PROCESS:
                    audit_logger.log_document_process(document_id, user_id)
                elif action == ActionTypeName.UNPROCESS:
                    audit_logger.log_document_unprocess(document_id, user_id)
                elif action == ActionTypeName.TRASH:
                    audit_logger.log_document_trash(document_id, user_id)
                elif action == ActionTypeName.RESTORE:
                    audit_logger.log_document_restore(document_id, user_id)
                else:
                    audit_logger.log_document_action(
                        document_id,
                        user_id,
                        ActionTypeName.CUSTOM.value,
                        f"Document action performed: {action}",
                    )
        except Exception as e:
            logger.error(
                f"Error in action audit middleware: {sanitize_for_logging(str(e))} "
                f"action={sanitize_for_logging(str(action))} document_id={document_id}"
            )

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            action, path_params = resolve_audit_route(request.app, request.scope)
        except Exception as e:
            logger.error(f"Error resolving audit route: {sanitize_for_logging(str(e))}")
            action, path_params = None, {}

        raw_document_id = str(path_params.get("document_id", ""))
        if not action or not raw_document_id.isdigit():
            return await call_next(request)

        document_id = int(raw_document_id)

        if action == ActionTypeName.VIEW:
            user_id = _header_user_id(request)
            if user_id is not None:
                await run_in_threadpool(self._log, ActionTypeName.VIEW, document_id, user_id)
            return await call_next(request)

        response = await call_next(request)

        if 200 <= response.status_code < 300:
            resolved = getattr(request.state, "audit_action", None) or action
            user_id = _header_user_id(request)
            if user_id is not None and resolved in LIFECYCLE_ACTIONS:
                await run_in_threadpool(self._log, resolved, document_id, user_id)

        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
    errors: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)
        errors: Field -> message map for validation errors (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion
    if errors:
        error_detail["errors"] = errors

    return JSONResponse(status_code=status_code, content={"error": error_detail})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if isinstance(exc, ConfigurationError):
        return create_error_response(
            code="CONFIGURATION_ERROR",
            message="Service configuration is invalid. Please contact administrator.",
            status_code=503,
        )

    if isinstance(exc, HTTPException):
        return create_error_response(
            code=f"HTTP_{exc.status_code}",
            message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            status_code=exc.status_code,
        )

    # Generic error - sanitize message to prevent info leakage
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


async def metadata_validation_handler(request: Request, exc: MetadataValidationError) -> JSONResponse:
    logger.info(
        "Metadata validation failed: fields=%s request_id=%s",
        sorted(exc.errors),
        getattr(request.state, "request_id", "unknown"),
    )
    security_logger = getattr(request.app.state, "security_logger", None)
    if security_logger is not None:
        for field, message in exc.errors.items():
            security_logger.log_validation_failure(
                field=field,
                error_code=exc.code,
                input_value="",
                source="MetadataService",
                additional_context={"message": message, "path": request.url.path},
            )
    return create_error_response(
        code=exc.code,
        message=str(exc),
        status_code=422,
        field=exc.field,
        errors=exc.errors,
    )


async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    return create_error_response(
        code=exc.code,
        message=str(exc),
        status_code=403,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Pydantic request errors in the standard error format."""
    errors = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(location) or "request"] = error.get("msg", "Invalid value")

    field = next(iter(errors), None)
    return create_error_response(
        code="VALIDATION_ERROR",
        message=errors[field] if field else "Invalid request",
        status_code=422,
        field=field,
        errors=errors,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(MetadataValidationError, metadata_validation_handler)
    app.add_exception_handler(AuthorizationError, authorization_error_handler)
    app.add_exception_handler(ConfigurationError, global_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
