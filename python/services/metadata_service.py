"""
Document metadata service

Reads and writes the metadata shown in the document side panel: the
policy -> loss -> claimant chain, the producer, the description and the
user/group assignments. Relationship rules of the chain are validated here,
and every effective change is written to the audit trail as a field diff.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Document
from database.repositories import DocumentRepository, LookupRepository
from services.audit_logger import AuditLogger
from services.file_storage import FileStorage

logger = logging.getLogger(__name__)

# Scalar document columns a metadata update may set
ID_FIELDS = ('policy_id', 'loss_id', 'claimant_id', 'producer_id')

FIELD_LABELS = {
    'policy_id': 'Policy Number',
    'loss_id': 'Loss Sequence',
    'claimant_id': 'Claimant',
    'producer_id': 'Producer Number',
    'description': 'Document Description',
    'assigned_users': 'Assigned Users',
    'assigned_groups': 'Assigned Groups',
}

LOSS_NOT_IN_POLICY = "The selected loss does not belong to the selected policy."
CLAIMANT_NOT_IN_LOSS = "The selected claimant does not belong to the selected loss."


class MetadataValidationError(Exception):
    """Raised when submitted metadata breaks a field rule; errors maps field -> message"""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        field, message = next(iter(self.errors.items())) if self.errors else (None, "Invalid metadata")
        self.field = field
        self.code = "METADATA_VALIDATION_ERROR"
        super().__init__(message)


def _normalize_id(value: Any) -> Optional[int]:
    """Falsy ids ('' / 0 / None) mean "no value"."""
    if not value:
        return None
    return int(value)


def _normalize_ids(values: Optional[Iterable[Any]]) -> List[int]:
    if not values:
        return []
    ids = []
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
            if int(value) and int(value) not in ids:
                ids.append(int(value))
    return ids


class MetadataService:
    """Metadata reads, validated updates and dropdown option queries."""

    def __init__(
        self,
        session: Session,
        audit_logger: AuditLogger,
        file_storage: Optional[FileStorage] = None,
        url_expiration_minutes: int = 60
    ):
        self.session = session
        self.audit_logger = audit_logger
        self.file_storage = file_storage
        self.url_expiration_minutes = url_expiration_minutes
        self.documents = DocumentRepository(session)
        self.lookups = LookupRepository(session)

    # ------------------------------------------
    # Display labels
    # ------------------------------------------

    def _policy_label(self, policy_id: Optional[int]) -> Optional[str]:
        policy = self.lookups.get_policy(policy_id) if policy_id else None
        return policy.formatted_number if policy else None

    def _loss_label(self, loss_id: Optional[int], policy_id: Optional[int]) -> Optional[str]:
        loss = self.lookups.get_loss(loss_id) if loss_id else None
        return self.lookups.loss_label(loss, policy_id) if loss else None

    def _claimant_label(self, claimant_id: Optional[int], loss_id: Optional[int]) -> Optional[str]:
        claimant = self.lookups.get_claimant(claimant_id) if claimant_id else None
        return self.lookups.claimant_label(claimant, loss_id) if claimant else None

    def _producer_label(self, producer_id: Optional[int]) -> Optional[str]:
        producer = self.lookups.get_producer(producer_id) if producer_id else None
        return producer.display_name if producer else None

    def _user_names(self, user_ids: Iterable[int]) -> str:
        names = []
        for user_id in user_ids:
            user = self.lookups.get_user(user_id)
            names.append(user.full_name if user else str(user_id))
        return ", ".join(names)

    def _group_names(self, group_ids: Iterable[int]) -> str:
        names = []
        for group_id in group_ids:
            group = self.lookups.get_user_group(group_id)
            names.append(group.name if group else str(group_id))
        return ", ".join(names)

    # ------------------------------------------
    # Read
    # ------------------------------------------

    def serialize_metadata(self, document: Document) -> Dict[str, Any]:
        """Flat metadata dictionary for a loaded document."""
        main_file = document.main_file
        file_url = None
        if main_file is not None and self.file_storage is not None:
            file_url = self.file_storage.build_signed_url(main_file.id, self.url_expiration_minutes)

        return {
            'id': document.id,
            'name': document.name,
            'description': document.description,
            'date_received': document.date_received.strftime('%Y-%m-%d') if document.date_received else None,
            'signature_required': document.signature_required,
            'policy_id': document.policy_id,
            'policy_number': document.policy_number,
            'loss_id': document.loss_id,
            'loss_sequence': (
                self.lookups.loss_label(document.loss, document.policy_id) if document.loss else None
            ),
            'claimant_id': document.claimant_id,
            'claimant_name': (
                self.lookups.claimant_label(document.claimant, document.loss_id) if document.claimant else None
            ),
            'producer_id': document.producer_id,
            'producer_number': document.producer_number,
            'assigned_to': document.assigned_to,
            'assigned_users': [{'id': user.id, 'name': user.full_name} for user in document.assigned_users],
            'assigned_groups': [{'id': group.id, 'name': group.name} for group in document.assigned_groups],
            'status_id': document.status_id,
            'is_processed': document.is_processed,
            'is_trashed': document.is_trashed,
            'created_at': document.created_at.isoformat() if document.created_at else None,
            'updated_at': document.updated_at.isoformat() if document.updated_at else None,
            'created_by': document.created_by,
            'updated_by': document.updated_by,
            'file_url': file_url,
            'filename': main_file.name if main_file else None,
        }

    def get_document_metadata(self, document_id: int, include_trashed: bool = False) -> Optional[Dict[str, Any]]:
        """Metadata for a document, None if it does not exist."""
        document = self.documents.get_by_id(document_id, include_deleted=include_trashed)
        if document is None:
            logger.error(f"MetadataService: document {document_id} not found")
            return None
        return self.serialize_metadata(document)

    # ------------------------------------------
    # Diff and validation
    # ------------------------------------------

    def track_changes(self, document: Document, data: Dict[str, Any]) -> Dict[str, Tuple[Any, Any]]:
        """
        Field diff between the document and submitted data.

        Keys are the user-facing field labels; values are (old, new) display
        labels. Fields absent from data are not compared.
        """
        changes: Dict[str, Tuple[Any, Any]] = {}
        new_policy_id = _normalize_id(data['policy_id']) if 'policy_id' in data else document.policy_id
        new_loss_id = _normalize_id(data['loss_id']) if 'loss_id' in data else document.loss_id

        if 'policy_id' in data and document.policy_id != new_policy_id:
            changes[FIELD_LABELS['policy_id']] = (
                self._policy_label(document.policy_id),
                self._policy_label(new_policy_id),
            )

        if 'loss_id' in data and document.loss_id != new_loss_id:
            changes[FIELD_LABELS['loss_id']] = (
                self._loss_label(document.loss_id, document.policy_id),
                self._loss_label(new_loss_id, new_policy_id),
            )

        if 'claimant_id' in data:
            new_claimant_id = _normalize_id(data['claimant_id'])
            if document.claimant_id != new_claimant_id:
                changes[FIELD_LABELS['claimant_id']] = (
                    self._claimant_label(document.claimant_id, document.loss_id),
                    self._claimant_label(new_claimant_id, new_loss_id),
                )

        if 'producer_id' in data:
            new_producer_id = _normalize_id(data['producer_id'])
            if document.producer_id != new_producer_id:
                changes[FIELD_LABELS['producer_id']] = (
                    self._producer_label(document.producer_id),
                    self._producer_label(new_producer_id),
                )

        if 'description' in data and (document.description or None) != (data['description'] or None):
            changes[FIELD_LABELS['description']] = (document.description, data['description'])

        if 'assigned_users' in data:
            current = [user.id for user in document.assigned_users]
            wanted = _normalize_ids(data['assigned_users'])
            if set(current) != set(wanted):
                changes[FIELD_LABELS['assigned_users']] = (
                    self._user_names(current),
                    self._user_names(wanted),
                )

        if 'assigned_groups' in data:
            current = [group.id for group in document.assigned_groups]
            wanted = _normalize_ids(data['assigned_groups'])
            if set(current) != set(wanted):
                changes[FIELD_LABELS['assigned_groups']] = (
                    self._group_names(current),
                    self._group_names(wanted),
                )

        return changes

    def validate_metadata_relationships(self, data: Dict[str, Any]) -> Dict[str, str]:
        """
        Check the policy -> loss -> claimant chain.

        Returns:
            Mapping of field -> message; empty when the chain is consistent
        """
        errors: Dict[str, str] = {}
        policy_id = _normalize_id(data.get('policy_id'))
        loss_id = _normalize_id(data.get('loss_id'))
        claimant_id = _normalize_id(data.get('claimant_id'))

        if policy_id and loss_id and not self.lookups.policy_has_loss(policy_id, loss_id):
            errors['loss_id'] = LOSS_NOT_IN_POLICY

        if loss_id and claimant_id and not self.lookups.loss_has_claimant(loss_id, claimant_id):
            errors['claimant_id'] = CLAIMANT_NOT_IN_LOSS

        return errors

    def validate_references(self, data: Dict[str, Any]) -> Dict[str, str]:
        """Check that referenced entities exist and dependent fields have their parent."""
        errors: Dict[str, str] = {}
        getters: Dict[str, Tuple[Callable, str]] = {
            'policy_id': (self.lookups.get_policy, "The selected policy does not exist."),
            'loss_id': (self.lookups.get_loss, "The selected loss does not exist."),
            'claimant_id': (self.lookups.get_claimant, "The selected claimant does not exist."),
            'producer_id': (self.lookups.get_producer, "The selected producer does not exist."),
        }
        for field_name, (getter, message) in getters.items():
            value = _normalize_id(data.get(field_name))
            if value and getter(value) is None:
                errors[field_name] = message

        if _normalize_id(data.get('claimant_id')) and not _normalize_id(data.get('loss_id')):
            errors.setdefault('loss_id', "A loss must be selected when a claimant is specified.")
        if _normalize_id(data.get('loss_id')) and not _normalize_id(data.get('policy_id')):
            errors.setdefault('policy_id', "A policy must be selected when a loss is specified.")

        for user_id in _normalize_ids(data.get('assigned_users')):
            if self.lookups.get_user(user_id) is None:
                errors['assigned_users'] = f"The selected user {user_id} does not exist."
                break
        for group_id in _normalize_ids(data.get('assigned_groups')):
            if self.lookups.get_user_group(group_id) is None:
                errors['assigned_groups'] = f"The selected user group {group_id} does not exist."
                break

        return errors

    # ------------------------------------------
    # Write
    # ------------------------------------------

    def update_document_metadata(
        self,
        document_id: int,
        data: Dict[str, Any],
        user_id: int
    ) -> Any:
        """
        Persist a metadata update and audit the diff.

        Returns:
            Refreshed metadata dict, or False when the document is missing,
            processed, or the write failed
        """
        document = self.documents.get_by_id(document_id)
        if document is None:
            logger.error(f"MetadataService: document {document_id} not found for update")
            return False

        if document.is_processed:
            logger.warning(f"MetadataService: attempted to update processed document {document_id} (user {user_id})")
            return False

        try:
            changes = self.track_changes(document, data)

            fields: Dict[str, Any] = {}
            for key in ID_FIELDS:
                if key in data:
                    fields[key] = _normalize_id(data[key])
            if 'description' in data:
                fields['description'] = data['description']
            if 'signature_required' in data and data['signature_required'] is not None:
                fields['signature_required'] = bool(data['signature_required'])

            self.documents.update_fields(document, fields, user_id)

            if 'assigned_users' in data:
                self.documents.sync_assigned_users(document, _normalize_ids(data['assigned_users']), user_id)
            if 'assigned_groups' in data:
                self.documents.sync_assigned_groups(document, _normalize_ids(data['assigned_groups']), user_id)

            if changes:
                self.audit_logger.log_document_edit(document_id, user_id, changes)

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"MetadataService: error updating document {document_id}: {e}")
            return False

        self.session.refresh(document)
        logger.info(f"Document {document_id} metadata updated by user {user_id} ({len(changes)} changes)")
        return self.serialize_metadata(document)

    # ------------------------------------------
    # Dropdown options
    # ------------------------------------------

    @staticmethod
    def format_options(items: Iterable[Any], label: Callable[[Any], str]) -> List[Dict[str, Any]]:
        return [{'id': item.id, 'value': item.id, 'label': label(item)} for item in items]

    def _options(self, name: str, query: Callable[[], List[Any]], label: Callable[[Any], str]) -> List[Dict[str, Any]]:
        try:
            return self.format_options(query(), label)
        except SQLAlchemyError as e:
            logger.error(f"MetadataService: error retrieving {name} options: {e}")
            self.session.rollback()
            return []

    def get_policy_options(
        self,
        search: Optional[str] = None,
        producer_id: Optional[int] = None,
        limit: int = 25
    ) -> List[Dict[str, Any]]:
        return self._options(
            'policy',
            lambda: self.lookups.search_policies(search, producer_id, limit),
            lambda policy: policy.display_name
        )

    def get_loss_options(self, policy_id: int, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        return self._options(
            'loss',
            lambda: self.lookups.search_losses(policy_id, search, limit),
            lambda loss: self.lookups.loss_label(loss, policy_id)
        )

    def get_claimant_options(self, loss_id: int, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        return self._options(
            'claimant',
            lambda: self.lookups.search_claimants(loss_id, search, limit),
            lambda claimant: self.lookups.claimant_label(claimant, loss_id)
        )

    def get_producer_options(self, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        return self._options(
            'producer',
            lambda: self.lookups.search_producers(search, limit),
            lambda producer: producer.display_name
        )

    def get_user_options(self, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        return self._options(
            'user',
            lambda: self.lookups.search_users(search, limit),
            lambda user: user.full_name
        )

    def get_user_group_options(self, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        return self._options(
            'user group',
            lambda: self.lookups.search_user_groups(search, limit),
            lambda group: group.name
        )
