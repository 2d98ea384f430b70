"""
Audit trail recording and retrieval for documents

Every user-attributed operation on a document becomes an Action row of a
fixed ActionType, linked to the document through map_document_action.
Writes happen in the caller's session and transaction; the caller commits.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config_manager import AuditConfig
from database.models import Action, ActionTypeName, MapDocumentAction, User
from database.monitoring import record_document_action
from database.repositories import AuditRepository, DocumentRepository

logger = logging.getLogger(__name__)

EMPTY_VALUE = "(empty)"


def format_changes_description(changes: Dict[str, Iterable[Any]]) -> str:
    """
    Render a field diff as a human readable sentence.

    Example:
        {"Policy Number": (None, "PLCY-100")} ->
        "Policy Number changed from '(empty)' to 'PLCY-100'"
    """
    descriptions = []
    for field_name, values in changes.items():
        values = tuple(values) if values is not None else ()
        if len(values) != 2:
            continue
        old_value, new_value = values
        old_value = EMPTY_VALUE if old_value is None or old_value == "" else old_value
        new_value = EMPTY_VALUE if new_value is None or new_value == "" else new_value
        descriptions.append(f"{field_name} changed from '{old_value}' to '{new_value}'")

    return ", ".join(descriptions) if descriptions else "Document updated"


def _format_timestamp(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _user_info(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        'id': user.id,
        'username': user.username,
        'name': user.full_name,
    }


def pagination_meta(page: int, per_page: int, total: int) -> Dict[str, Any]:
    """Page metadata in the {current_page, from, last_page, per_page, to, total} shape."""
    last_page = max(1, math.ceil(total / per_page)) if per_page else 1
    first_item = (page - 1) * per_page + 1 if total and page <= last_page else None
    last_item = min(page * per_page, total) if first_item is not None else None
    return {
        'current_page': page,
        'from': first_item,
        'last_page': last_page,
        'per_page': per_page,
        'to': last_item,
        'total': total,
    }


class AuditLogger:
    """Records typed document actions and serves the document history."""

    def __init__(self, session: Session, config: Optional[AuditConfig] = None):
        self.session = session
        self.config = config or AuditConfig()
        self.audit_repo = AuditRepository(session)
        self.document_repo = DocumentRepository(session)

    # ------------------------------------------
    # Recording
    # ------------------------------------------

    def _record(
        self,
        document_id: int,
        user_id: int,
        action_type: str,
        description: str
    ) -> bool:
        """Write one action for the document; False if anything is missing."""
        try:
            if not self.document_repo.exists(document_id, include_deleted=True):
                logger.error(f"Failed to log {action_type} action - document {document_id} not found")
                return False

            if user_id is None or self.session.get(User, user_id) is None:
                logger.error(f"Failed to log {action_type} action - user {user_id} not found")
                return False

            action_type_row = self.audit_repo.get_action_type(action_type)
            if action_type_row is None:
                logger.error(f"Failed to log {action_type} action - action type not found")
                return False

            self.audit_repo.create_action(document_id, action_type_row, user_id, description)
        except SQLAlchemyError as e:
            logger.error(f"Error logging {action_type} action for document {document_id}: {e}")
            return False

        record_document_action(action_type)
        logger.info(f"Document {document_id}: {action_type} by user {user_id}")
        return True

    def log_document_view(self, document_id: int, user_id: int) -> bool:
        if not self.config.log_document_views:
            return True
        return self._record(document_id, user_id, ActionTypeName.VIEW.value, "Document viewed")

    def log_document_edit(self, document_id: int, user_id: int, changes: Dict[str, Tuple[Any, Any]]) -> bool:
        if not self.config.log_metadata_changes:
            return True
        return self._record(
            document_id,
            user_id,
            ActionTypeName.EDIT.value,
            format_changes_description(changes)
        )

    def log_document_process(self, document_id: int, user_id: int) -> bool:
        if not self.config.log_document_processing:
            return True
        return self._record(document_id, user_id, ActionTypeName.PROCESS.value, "Marked as processed")

    def log_document_unprocess(self, document_id: int, user_id: int) -> bool:
        if not self.config.log_document_processing:
            return True
        return self._record(document_id, user_id, ActionTypeName.UNPROCESS.value, "Marked as unprocessed")

    def log_document_trash(self, document_id: int, user_id: int) -> bool:
        if not self.config.log_document_processing:
            return True
        return self._record(document_id, user_id, ActionTypeName.TRASH.value, "Moved to trash")

    def log_document_restore(self, document_id: int, user_id: int) -> bool:
        if not self.config.log_document_processing:
            return True
        return self._record(document_id, user_id, ActionTypeName.RESTORE.value, "Restored from trash")

    def log_document_action(self, document_id: int, user_id: int, action_type: str, description: str) -> bool:
        """Record an action of any seeded type with a free-text description."""
        return self._record(document_id, user_id, action_type, description)

    format_changes_description = staticmethod(format_changes_description)

    # ------------------------------------------
    # Retrieval
    # ------------------------------------------

    @staticmethod
    def serialize_history_entry(row: MapDocumentAction) -> Dict[str, Any]:
        action: Optional[Action] = row.action
        action_type = action.action_type if action is not None else None
        return {
            'id': row.id,
            'document_id': row.document_id,
            'action_id': action.id if action is not None else None,
            'action_type': {
                'id': action_type.id,
                'name': action_type.name,
            } if action_type is not None else None,
            'description': action.description if action is not None else None,
            'timestamp': _format_timestamp(action.created_at) if action is not None else None,
            'user': _user_info(action.user) if action is not None else None,
            'created_at': _format_timestamp(row.created_at),
            'updated_at': _format_timestamp(row.updated_at),
        }

    def get_document_history(
        self,
        document_id: int,
        per_page: int = 10,
        direction: str = 'desc',
        page: int = 1,
        action_type_id: Optional[int] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Paginated history for a document.

        Returns:
            {"data": [...], "meta": {...}} or None if the document does not exist
        """
        if not self.document_repo.exists(document_id, include_deleted=True):
            logger.error(f"Failed to get history - document {document_id} not found")
            return None

        per_page = max(1, per_page)
        page = max(1, page)
        direction = 'asc' if direction == 'asc' else 'desc'

        rows, total = self.audit_repo.history(
            document_id,
            offset=(page - 1) * per_page,
            limit=per_page,
            direction=direction,
            action_type_id=action_type_id
        )
        return {
            'data': [self.serialize_history_entry(row) for row in rows],
            'meta': pagination_meta(page, per_page, total),
        }

    def get_last_document_action(self, document_id: int) -> Optional[Dict[str, Any]]:
        """Most recent action on the document, or None."""
        if not self.document_repo.exists(document_id, include_deleted=True):
            return None

        action = self.audit_repo.last_action(document_id)
        if action is None:
            return None

        return {
            'id': action.id,
            'action_type': action.action_type.name if action.action_type else None,
            'description': action.description,
            'timestamp': _format_timestamp(action.created_at),
            'user': _user_info(action.user),
        }

    def get_action_type_counts(self, document_id: int) -> Optional[List[Dict[str, Any]]]:
        """Every action type with how many times it was recorded for the document."""
        if not self.document_repo.exists(document_id, include_deleted=True):
            return None

        return [
            {
                'id': action_type.id,
                'name': action_type.name,
                'description': action_type.description,
                'count': count,
            }
            for action_type, count in self.audit_repo.count_by_action_type(document_id)
        ]
