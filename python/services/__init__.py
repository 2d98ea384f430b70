"""
Document services for the Documents View system

Business logic between the HTTP layer and the repositories:
metadata validation and option queries, the audit trail, file storage,
viewer configuration, authorization and rate limiting.
"""

from services.access_policy import AuthorizationError, DocumentAction, DocumentPolicy
from services.audit_logger import AuditLogger, format_changes_description
from services.document_manager import DocumentManager
from services.file_storage import FileStorage
from services.metadata_service import MetadataService, MetadataValidationError
from services.pdf_viewer import PdfViewerService
from services.rate_limiter import RateLimitPolicy, RateLimitResult

__all__ = [
    'AuthorizationError',
    'DocumentAction',
    'DocumentPolicy',
    'AuditLogger',
    'format_changes_description',
    'DocumentManager',
    'FileStorage',
    'MetadataService',
    'MetadataValidationError',
    'PdfViewerService',
    'RateLimitPolicy',
    'RateLimitResult',
]
