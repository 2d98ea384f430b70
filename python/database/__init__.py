"""
Database Package for the Documents View system

This package provides:
- SQLAlchemy ORM models for documents, reference entities and the audit trail
- FastAPI Dependency Injection for database sessions
- Repository pattern for data access
- Prometheus query timing and health checks
"""

from database.models import (
    Base,
    RecordStatus,
    DocumentStatus,
    UserRole,
    ActionTypeName,
    PolicyPrefix,
    Policy,
    Loss,
    Claimant,
    Producer,
    UserGroup,
    User,
    File,
    Document,
    ActionType,
    Action,
    MapPolicyLoss,
    MapLossClaimant,
    MapProducerPolicy,
    MapUserDocument,
    MapUserGroupDocument,
    MapDocumentFile,
    MapDocumentAction,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    set_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    DocumentRepository,
    LookupRepository,
    AuditRepository,
    FileRepository,
    DuplicateEntityError,
)
from database.monitoring import (
    query_timer,
    timed_query,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base and enums
    'Base',
    'RecordStatus',
    'DocumentStatus',
    'UserRole',
    'ActionTypeName',
    # Reference models
    'PolicyPrefix',
    'Policy',
    'Loss',
    'Claimant',
    'Producer',
    'UserGroup',
    'User',
    'File',
    # Documents and audit trail
    'Document',
    'ActionType',
    'Action',
    # Pivots
    'MapPolicyLoss',
    'MapLossClaimant',
    'MapProducerPolicy',
    'MapUserDocument',
    'MapUserGroupDocument',
    'MapDocumentFile',
    'MapDocumentAction',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'get_db',
    'get_db_provider',
    'set_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Repositories
    'DocumentRepository',
    'LookupRepository',
    'AuditRepository',
    'FileRepository',
    'DuplicateEntityError',
    # Monitoring
    'query_timer',
    'timed_query',
    'check_health',
    'HealthStatus',
]
