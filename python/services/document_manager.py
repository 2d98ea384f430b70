"""
Document orchestration service

DocumentManager is the entry point the HTTP layer uses for documents. It
composes MetadataService, AuditLogger, FileStorage and PdfViewerService and
owns the transaction of each lifecycle operation (process, trash, restore).
With audit_lifecycle off the lifecycle actions are left to the HTTP audit
middleware.
Not-found paths return None/False instead of raising.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config_manager import DocumentsConfig
from database.models import Document, User, UserRole
from database.repositories import DocumentRepository, SORTABLE_COLUMNS
from services.audit_logger import AuditLogger
from services.file_storage import FileStorage
from services.metadata_service import MetadataService
from services.pdf_viewer import PdfViewerService

logger = logging.getLogger(__name__)

PROCESSED_DOCUMENT_MESSAGE = "Processed documents cannot be edited. Mark the document as unprocessed first."

# Configured required field names -> (document attribute, label)
REQUIRED_FIELD_ATTRIBUTES = {
    'policy_number': ('policy_id', 'Policy Number'),
    'loss_sequence': ('loss_id', 'Loss Sequence'),
    'claimant': ('claimant_id', 'Claimant'),
    'producer_number': ('producer_id', 'Producer Number'),
    'document_description': ('description', 'Document Description'),
}

FILTER_KEYS = (
    'status', 'policy_id', 'loss_id', 'claimant_id', 'producer_id', 'search',
    'date_from', 'date_to', 'assigned_to_user', 'assigned_to_group',
    'created_by', 'updated_by',
)


class DocumentManager:
    """Retrieval, update and lifecycle operations on documents."""

    def __init__(
        self,
        session: Session,
        metadata_service: MetadataService,
        audit_logger: AuditLogger,
        file_storage: FileStorage,
        pdf_viewer: PdfViewerService,
        config: Optional[DocumentsConfig] = None,
        audit_lifecycle: bool = True
    ):
        self.session = session
        self.metadata_service = metadata_service
        self.audit_logger = audit_logger
        self.file_storage = file_storage
        self.pdf_viewer = pdf_viewer
        self.config = config or DocumentsConfig()
        self.audit_lifecycle = audit_lifecycle
        self.documents = DocumentRepository(session)

    # ------------------------------------------
    # Retrieval
    # ------------------------------------------

    def get_document(self, document_id: int, include_trashed: bool = False) -> Optional[Document]:
        return self.documents.get_by_id(document_id, include_deleted=include_trashed)

    def get_documents(
        self,
        filters: Optional[Dict[str, Any]] = None,
        per_page: Optional[int] = None,
        page: int = 1,
        sort_by: str = 'created_at',
        sort_direction: str = 'desc'
    ) -> Tuple[List[Document], int, int, int]:
        """
        Filtered, sorted page of documents.

        Returns:
            Tuple of (documents, total, page, per_page) after clamping
        """
        pagination = self.config.pagination
        per_page = per_page or pagination.default_per_page
        per_page = max(1, min(per_page, pagination.max_per_page))
        page = max(1, page)

        if sort_by not in SORTABLE_COLUMNS:
            sort_by = 'created_at'
        sort_direction = 'asc' if str(sort_direction).lower() == 'asc' else 'desc'

        clean_filters = {
            key: value for key, value in (filters or {}).items()
            if key in FILTER_KEYS and value not in (None, '')
        }

        try:
            documents, total = self.documents.list_documents(
                clean_filters,
                offset=(page - 1) * per_page,
                limit=per_page,
                sort_by=sort_by,
                sort_direction=sort_direction
            )
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving documents: {e}")
            self.session.rollback()
            return [], 0, page, per_page

        return documents, total, page, per_page

    def get_document_metadata(self, document_id: int, include_trashed: bool = False) -> Optional[Dict[str, Any]]:
        return self.metadata_service.get_document_metadata(document_id, include_trashed=include_trashed)

    # ------------------------------------------
    # Update
    # ------------------------------------------

    def validate_update(self, document: Document, data: Dict[str, Any]) -> Dict[str, str]:
        """
        Field errors for a metadata update of document; empty when valid.

        The chain is checked against the values the document will have
        after the update, so changing the policy alone cannot orphan the
        current loss.
        """
        if document.is_processed:
            return {'document': PROCESSED_DOCUMENT_MESSAGE}

        effective = {
            'policy_id': document.policy_id,
            'loss_id': document.loss_id,
            'claimant_id': document.claimant_id,
            'producer_id': document.producer_id,
        }
        effective.update(data)

        errors = self.metadata_service.validate_references(effective)
        for field_name, message in self.metadata_service.validate_metadata_relationships(effective).items():
            errors.setdefault(field_name, message)
        return errors

    def update_document(self, document_id: int, data: Dict[str, Any], user_id: int) -> Optional[Document]:
        """Validated metadata update; None when missing, processed or invalid."""
        document = self.get_document(document_id)
        if document is None:
            logger.error(f"Document {document_id} not found for update")
            return None

        errors = self.validate_update(document, data)
        if errors:
            logger.warning(f"Metadata validation failed for document {document_id}: {sorted(errors)}")
            return None

        result = self.metadata_service.update_document_metadata(document_id, data, user_id)
        if not result:
            return None

        return self.get_document(document_id)

    # ------------------------------------------
    # Lifecycle
    # ------------------------------------------

    def validate_processing(self, document: Document, process_state: bool) -> Dict[str, str]:
        """Required metadata missing for marking the document processed."""
        if not process_state or not self.config.require_metadata_for_processing:
            return {}

        errors = {}
        for field_name in self.config.required_fields:
            attribute, label = REQUIRED_FIELD_ATTRIBUTES.get(field_name, (field_name, field_name))
            if not getattr(document, attribute, None):
                errors[attribute] = f"{label} is required before the document can be processed."
        return errors

    def process_document(self, document_id: int, process_state: bool, user_id: int) -> Optional[Document]:
        """Mark processed (True) or unprocessed (False) and audit the change."""
        document = self.get_document(document_id)
        if document is None:
            logger.error(f"Document {document_id} not found for processing")
            return None

        errors = self.validate_processing(document, process_state)
        if errors:
            logger.warning(f"Document {document_id} is missing required metadata: {sorted(errors)}")
            return None

        try:
            if process_state:
                self.documents.mark_processed(document, user_id)
                if self.audit_lifecycle:
                    self.audit_logger.log_document_process(document_id, user_id)
            else:
                self.documents.mark_unprocessed(document, user_id)
                if self.audit_lifecycle:
                    self.audit_logger.log_document_unprocess(document_id, user_id)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error processing document {document_id}: {e}")
            return None

        self.session.refresh(document)
        return document

    def trash_document(self, document_id: int, user_id: int) -> bool:
        document = self.get_document(document_id)
        if document is None:
            logger.error(f"Document {document_id} not found for trashing")
            return False

        try:
            self.documents.move_to_trash(document, user_id)
            if self.audit_lifecycle:
                self.audit_logger.log_document_trash(document_id, user_id)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error trashing document {document_id}: {e}")
            return False

        return True

    def restore_document(self, document_id: int, user_id: int) -> Optional[Document]:
        """Bring a trashed document back as unprocessed."""
        document = self.get_document(document_id, include_trashed=True)
        if document is None:
            logger.error(f"Document {document_id} not found for restoration")
            return None

        if not document.is_trashed:
            logger.info(f"Document {document_id} is not trashed, nothing to restore")
            return document

        try:
            self.documents.restore(document, user_id)
            if self.audit_lifecycle:
                self.audit_logger.log_document_restore(document_id, user_id)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error restoring document {document_id}: {e}")
            return None

        self.session.refresh(document)
        return document

    # ------------------------------------------
    # Files and viewer
    # ------------------------------------------

    def _main_file(self, document_id: int):
        document = self.get_document(document_id)
        if document is None:
            return None, None
        return document, document.main_file

    def get_document_file(self, document_id: int) -> Optional[Tuple[bytes, str, str]]:
        """(content, mime_type, filename) of the document's main file."""
        _, main_file = self._main_file(document_id)
        if main_file is None:
            return None

        content = self.file_storage.read_file(main_file.id)
        if content is None:
            return None
        return content, main_file.mime_type, main_file.name

    def get_document_file_url(self, document_id: int, expiration_minutes: Optional[int] = None) -> Optional[str]:
        _, main_file = self._main_file(document_id)
        if main_file is None:
            return None
        return self.file_storage.get_file_url(
            main_file.id,
            expiration_minutes or self.config.url_expiration_minutes
        )

    def get_document_viewer_url(self, document_id: int, expiration_minutes: Optional[int] = None) -> Optional[str]:
        _, main_file = self._main_file(document_id)
        if main_file is None:
            return None
        return self.pdf_viewer.get_document_view_url(
            main_file,
            expiration_minutes or self.config.url_expiration_minutes
        )

    def get_document_viewer_config(self, document_id: int) -> Optional[Dict[str, Any]]:
        document, main_file = self._main_file(document_id)
        if main_file is None:
            return None

        config = self.pdf_viewer.get_viewer_config(main_file, self.config.url_expiration_minutes)
        config['documentId'] = document.id
        config['documentName'] = document.name
        config['isProcessed'] = document.is_processed
        return config

    # ------------------------------------------
    # History
    # ------------------------------------------

    def get_document_history(
        self,
        document_id: int,
        per_page: Optional[int] = None,
        direction: str = 'desc',
        page: int = 1,
        action_type_id: Optional[int] = None
    ) -> Optional[Dict[str, Any]]:
        if not self.check_document_exists(document_id):
            return None
        return self.audit_logger.get_document_history(
            document_id,
            per_page=per_page or self.config.pagination.history_per_page,
            direction=direction,
            page=page,
            action_type_id=action_type_id
        )

    def log_document_view(self, document_id: int, user_id: int) -> bool:
        """Record a view; failures are logged and reported as False."""
        try:
            logged = self.audit_logger.log_document_view(document_id, user_id)
            self.session.commit()
            return logged
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error logging view of document {document_id}: {e}")
            return False

    # ------------------------------------------
    # Checks
    # ------------------------------------------

    def validate_document_access(self, document_id: int, user_id: int) -> bool:
        """True if the user is assigned, in an assigned group, an author, or a supervisor."""
        document = self.get_document(document_id, include_trashed=True)
        if document is None:
            return False

        user = self.session.get(User, user_id)
        if user is not None and user.has_role(UserRole.ADMIN, UserRole.MANAGER):
            return True

        if user_id in (document.created_by, document.updated_by):
            return True

        if self.documents.is_assigned_to_user(document_id, user_id):
            return True

        return bool(
            user is not None
            and user.user_group_id
            and self.documents.is_assigned_to_group(document_id, user.user_group_id)
        )

    def check_document_exists(self, document_id: int) -> bool:
        return self.documents.exists(document_id, include_deleted=True)

    def is_document_processed(self, document_id: int) -> bool:
        document = self.get_document(document_id)
        return bool(document and document.is_processed)

    def is_document_trashed(self, document_id: int) -> bool:
        document = self.get_document(document_id, include_trashed=True)
        return bool(document and document.is_trashed)
