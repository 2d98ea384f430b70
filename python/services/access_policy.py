"""
Role-based authorization rules for document actions
"""

import logging
from enum import Enum
from typing import Optional

from database.models import Document, User, UserRole
from security_logger import SecurityLogger

logger = logging.getLogger(__name__)


class DocumentAction(str, Enum):
    """Actions a user can attempt on a document"""
    VIEW = "view"
    VIEW_HISTORY = "view_history"
    UPDATE = "update"
    PROCESS = "process"
    TRASH = "trash"
    RESTORE = "restore"


class AuthorizationError(Exception):
    """Raised when a user may not perform an action on a document"""

    def __init__(self, action: str, message: str, document_id: Optional[int] = None):
        self.action = action
        self.document_id = document_id
        self.code = "FORBIDDEN"
        super().__init__(message)


SUPERVISOR_ROLES = (UserRole.ADMIN, UserRole.MANAGER)
EDITOR_ROLES = (
    UserRole.ADMIN, UserRole.MANAGER, UserRole.ADJUSTER,
    UserRole.UNDERWRITER, UserRole.SUPPORT,
)
PROCESSOR_ROLES = (
    UserRole.ADMIN, UserRole.MANAGER, UserRole.ADJUSTER, UserRole.UNDERWRITER,
)


class DocumentPolicy:
    """
    Decides whether a user may perform a DocumentAction on a document.

    Trashed documents cannot be edited, processed or trashed again by
    anyone. Otherwise admins may do everything, trashed documents are only
    visible to admins and managers and processed documents are locked for
    everyone below manager.
    """

    def __init__(self, security_logger: Optional[SecurityLogger] = None):
        self.security_logger = security_logger

    def check(self, user: Optional[User], action: DocumentAction, document: Document) -> Optional[str]:
        """Return None when allowed, otherwise the reason for the denial."""
        if user is None:
            return "Authentication required"
        if not user.is_active:
            return "User account is inactive"

        # State rules bind every role
        if document.is_trashed:
            if action == DocumentAction.UPDATE:
                return "Trashed documents cannot be edited"
            if action == DocumentAction.PROCESS:
                return "Trashed documents cannot be processed"
            if action == DocumentAction.TRASH:
                return "Document is already in the trash"

        if user.is_admin:
            return None

        supervisor = user.has_role(*SUPERVISOR_ROLES)

        if action in (DocumentAction.VIEW, DocumentAction.VIEW_HISTORY):
            if document.is_trashed and not supervisor:
                return "Only administrators and managers can access trashed documents"
            return None

        if action == DocumentAction.UPDATE:
            if document.is_processed and not supervisor:
                return "Processed documents are locked"
            if not user.has_role(*EDITOR_ROLES):
                return "Your role cannot edit documents"
            return None

        if action == DocumentAction.PROCESS:
            if document.is_processed and not supervisor:
                return "Processed documents are locked"
            if not user.has_role(*PROCESSOR_ROLES):
                return "Your role cannot process documents"
            return None

        if action == DocumentAction.TRASH:
            if not supervisor:
                return "Only administrators and managers can trash documents"
            return None

        if action == DocumentAction.RESTORE:
            if not supervisor:
                return "Only administrators and managers can restore documents"
            return None

        return f"Unknown action: {action}"

    def allows(self, user: Optional[User], action: DocumentAction, document: Document) -> bool:
        return self.check(user, action, document) is None

    def authorize(self, user: Optional[User], action: DocumentAction, document: Document) -> None:
        """
        Raise AuthorizationError unless the action is allowed.

        Denials are written to the security log.
        """
        reason = self.check(user, action, document)
        if reason is None:
            return

        user_id = user.id if user is not None else None
        logger.warning(
            f"Denied {action.value} on document {document.id} for user {user_id}: {reason}"
        )
        if self.security_logger is not None:
            self.security_logger.log_access_denied(
                action=action.value,
                document_id=document.id,
                user_id=user_id,
                reason=reason
            )
        raise AuthorizationError(action.value, reason, document.id)
