"""
FastAPI dependencies for the Documents View API

API key check, the request-scoped auth context and the per-request service
graph built on top of the database session.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from config_manager import ConfigManager, get_config
from database.connection import get_db
from database.models import User
from security_logger import SecurityLogger, get_security_logger
from services.access_policy import DocumentPolicy
from services.audit_logger import AuditLogger
from services.document_manager import DocumentManager
from services.file_storage import FileStorage
from services.metadata_service import MetadataService
from services.pdf_viewer import PdfViewerService

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("CONFIG_PATH") or None
SECURITY_LOG_DIR = os.getenv("SECURITY_LOG_DIR", "logs")
SECURITY_LOG_TO_FILE = os.getenv("SECURITY_LOG_TO_FILE", "true").lower() == "true"

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    expected = os.getenv("API_KEY", "")
    if not expected:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != expected:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


@dataclass
class AuthContext:
    """The acting user of the current request."""
    user: User

    @property
    def user_id(self) -> int:
        return self.user.id


def get_app_config() -> ConfigManager:
    """Dependency to get the config instance."""
    return get_config(CONFIG_PATH)


def get_app_security_logger() -> SecurityLogger:
    return get_security_logger(log_dir=SECURITY_LOG_DIR, enable_file=SECURITY_LOG_TO_FILE)


def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    api_key: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Resolve the acting user from the X-User-ID header."""
    if not x_user_id or not x_user_id.strip().isdigit():
        raise HTTPException(
            status_code=401, detail="Missing user identity. Provide X-User-ID header."
        )

    user = db.get(User, int(x_user_id))
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")

    request.state.user_id = user.id
    return AuthContext(user=user)


def get_document_policy(
    security_logger: SecurityLogger = Depends(get_app_security_logger),
) -> DocumentPolicy:
    return DocumentPolicy(security_logger=security_logger)


def get_audit_logger(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_app_config),
) -> AuditLogger:
    return AuditLogger(db, config.documents.audit)


def get_file_storage(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_app_config),
    security_logger: SecurityLogger = Depends(get_app_security_logger),
) -> FileStorage:
    return FileStorage(db, config.storage, security_logger=security_logger)


def get_pdf_viewer(
    file_storage: FileStorage = Depends(get_file_storage),
    config: ConfigManager = Depends(get_app_config),
) -> PdfViewerService:
    return PdfViewerService(file_storage, config.viewer)


def get_metadata_service(
    db: Session = Depends(get_db),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    file_storage: FileStorage = Depends(get_file_storage),
    config: ConfigManager = Depends(get_app_config),
) -> MetadataService:
    return MetadataService(
        db,
        audit_logger,
        file_storage=file_storage,
        url_expiration_minutes=config.documents.url_expiration_minutes,
    )


def get_document_manager(
    db: Session = Depends(get_db),
    metadata_service: MetadataService = Depends(get_metadata_service),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    file_storage: FileStorage = Depends(get_file_storage),
    pdf_viewer: PdfViewerService = Depends(get_pdf_viewer),
    config: ConfigManager = Depends(get_app_config),
) -> DocumentManager:
    """Document manager for HTTP requests; lifecycle audit rows come from ActionAuditMiddleware."""
    return DocumentManager(
        db,
        metadata_service,
        audit_logger,
        file_storage,
        pdf_viewer,
        config.documents,
        audit_lifecycle=False,
    )
