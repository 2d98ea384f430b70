"""
Repository Pattern for Documents View Database Operations

Provides clean data access layer with proper typing and error handling.
Models stay plain data records; lifecycle transitions, pivot lookups,
option searches and audit history queries live here.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Tuple, Iterable

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    Document,
    Policy,
    PolicyPrefix,
    Loss,
    Claimant,
    Producer,
    User,
    UserGroup,
    File,
    Action,
    ActionType,
    MapPolicyLoss,
    MapLossClaimant,
    MapProducerPolicy,
    MapUserDocument,
    MapUserGroupDocument,
    MapDocumentFile,
    MapDocumentAction,
    DocumentStatus,
    RecordStatus,
    ActionTypeName,
    ACTION_TYPE_DESCRIPTIONS,
)
from database.monitoring import timed_query

logger = logging.getLogger(__name__)


class DuplicateEntityError(Exception):
    """Raised when attempting to create a duplicate entity."""
    pass


# Columns the document list may be sorted by
SORTABLE_COLUMNS = {
    'id': Document.id,
    'name': Document.name,
    'date_received': Document.date_received,
    'status_id': Document.status_id,
    'created_at': Document.created_at,
    'updated_at': Document.updated_at,
}


def _like(term: str) -> str:
    return f"%{term.strip()}%"


# ============================================
# DOCUMENT REPOSITORY
# ============================================

class DocumentRepository:
    """Repository for document reads and lifecycle transitions."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, data: Dict[str, Any], user_id: Optional[int] = None) -> Document:
        """
        Create a new unprocessed document.

        Args:
            data: Dictionary containing document fields
            user_id: Creating user

        Returns:
            Created Document instance
        """
        document = Document(**data)
        document.status_id = data.get('status_id', DocumentStatus.UNPROCESSED)
        document.created_by = user_id
        document.updated_by = user_id
        self.session.add(document)
        self.session.flush()

        logger.debug(f"Created document: {document.id} ({document.name})")
        return document

    def get_by_id(self, document_id: int, include_deleted: bool = False) -> Optional[Document]:
        """
        Get document by ID.

        Args:
            document_id: ID of the document
            include_deleted: If True, include soft-deleted (trashed) documents

        Returns:
            Document or None
        """
        query = select(Document).where(Document.id == document_id)

        if not include_deleted:
            query = query.where(Document.is_deleted == False)

        result = self.session.execute(query)
        return result.unique().scalar_one_or_none()

    def exists(self, document_id: int, include_deleted: bool = True) -> bool:
        query = select(func.count()).select_from(Document).where(Document.id == document_id)
        if not include_deleted:
            query = query.where(Document.is_deleted == False)
        return self.session.execute(query).scalar_one() > 0

    def _filter_conditions(self, filters: Dict[str, Any]) -> List[Any]:
        """Translate list filters into SQL conditions."""
        conditions = []

        status = filters.get('status')
        if status == 'trashed':
            conditions.append(or_(
                Document.is_deleted == True,
                Document.status_id == DocumentStatus.TRASHED
            ))
        else:
            conditions.append(Document.is_deleted == False)
            if status == 'processed':
                conditions.append(Document.status_id == DocumentStatus.PROCESSED)
            elif status == 'unprocessed':
                conditions.append(Document.status_id == DocumentStatus.UNPROCESSED)

        for key in ('policy_id', 'loss_id', 'claimant_id', 'producer_id', 'created_by', 'updated_by'):
            if filters.get(key):
                conditions.append(getattr(Document, key) == filters[key])

        search = filters.get('search')
        if search:
            pattern = _like(search)
            conditions.append(or_(
                Document.name.ilike(pattern),
                Document.description.ilike(pattern),
                Document.policy.has(Policy.number.ilike(pattern)),
                Document.loss.has(Loss.name.ilike(pattern)),
                Document.claimant.has(or_(
                    Claimant.first_name.ilike(pattern),
                    Claimant.last_name.ilike(pattern),
                    Claimant.description.ilike(pattern),
                )),
                Document.producer.has(or_(
                    Producer.number.ilike(pattern),
                    Producer.name.ilike(pattern),
                )),
            ))

        if filters.get('date_from'):
            conditions.append(Document.date_received >= filters['date_from'])
        if filters.get('date_to'):
            conditions.append(Document.date_received <= filters['date_to'])

        if filters.get('assigned_to_user'):
            conditions.append(Document.id.in_(
                select(MapUserDocument.document_id).where(and_(
                    MapUserDocument.user_id == filters['assigned_to_user'],
                    MapUserDocument.status_id == RecordStatus.ACTIVE
                ))
            ))
        if filters.get('assigned_to_group'):
            conditions.append(Document.id.in_(
                select(MapUserGroupDocument.document_id).where(and_(
                    MapUserGroupDocument.user_group_id == filters['assigned_to_group'],
                    MapUserGroupDocument.status_id == RecordStatus.ACTIVE
                ))
            ))

        return conditions

    @timed_query("list_documents")
    def list_documents(
        self,
        filters: Optional[Dict[str, Any]] = None,
        offset: int = 0,
        limit: int = 15,
        sort_by: str = 'created_at',
        sort_direction: str = 'desc'
    ) -> Tuple[List[Document], int]:
        """
        List documents with filtering, sorting and pagination.

        Trashed documents are only returned for status='trashed'.

        Returns:
            Tuple of (documents list, total count)
        """
        conditions = self._filter_conditions(filters or {})

        count_query = select(func.count()).select_from(Document).where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        column = SORTABLE_COLUMNS.get(sort_by, Document.created_at)
        order = column.asc() if sort_direction == 'asc' else column.desc()
        tie_breaker = Document.id.asc() if sort_direction == 'asc' else Document.id.desc()

        query = select(Document).where(
            and_(*conditions)
        ).order_by(order, tie_breaker).offset(offset).limit(limit)

        result = self.session.execute(query)
        documents = list(result.scalars().unique().all())

        return documents, total

    def update_fields(self, document: Document, fields: Dict[str, Any], user_id: Optional[int]) -> Document:
        """Set metadata fields on a document and stamp the editor."""
        for key, value in fields.items():
            if hasattr(document, key):
                setattr(document, key, value)
        document.updated_by = user_id
        self.session.flush()
        return document

    def mark_processed(self, document: Document, user_id: Optional[int]) -> Document:
        document.status_id = DocumentStatus.PROCESSED
        document.updated_by = user_id
        self.session.flush()
        return document

    def mark_unprocessed(self, document: Document, user_id: Optional[int]) -> Document:
        document.status_id = DocumentStatus.UNPROCESSED
        document.updated_by = user_id
        self.session.flush()
        return document

    def move_to_trash(self, document: Document, user_id: Optional[int]) -> Document:
        """Set the trashed status and soft delete the document."""
        document.status_id = DocumentStatus.TRASHED
        document.updated_by = user_id
        document.is_deleted = True
        document.deleted_at = datetime.now(timezone.utc)
        self.session.flush()
        return document

    def restore(self, document: Document, user_id: Optional[int]) -> Document:
        """Undo a trash: clear the soft delete and return to unprocessed."""
        document.is_deleted = False
        document.deleted_at = None
        document.status_id = DocumentStatus.UNPROCESSED
        document.updated_by = user_id
        self.session.flush()
        return document

    def _sync_pivot(
        self,
        document: Document,
        model,
        column: str,
        ids: Iterable[int],
        user_id: Optional[int]
    ) -> None:
        wanted = {int(i) for i in ids if i}
        existing = {
            getattr(row, column): row
            for row in self.session.execute(
                select(model).where(model.document_id == document.id)
            ).scalars()
        }

        for key, row in existing.items():
            if key not in wanted:
                self.session.delete(row)
            elif row.status_id != RecordStatus.ACTIVE:
                row.status_id = RecordStatus.ACTIVE
                row.updated_by = user_id
        for key in wanted - set(existing):
            self.session.add(model(
                document_id=document.id,
                created_by=user_id,
                updated_by=user_id,
                **{column: key}
            ))

        self.session.flush()

    def sync_assigned_users(self, document: Document, user_ids: Iterable[int], user_id: Optional[int]) -> None:
        """Make the active user assignments exactly user_ids."""
        self._sync_pivot(document, MapUserDocument, 'user_id', user_ids, user_id)
        self.session.expire(document, ['assigned_users'])

    def sync_assigned_groups(self, document: Document, group_ids: Iterable[int], user_id: Optional[int]) -> None:
        """Make the active group assignments exactly group_ids."""
        self._sync_pivot(document, MapUserGroupDocument, 'user_group_id', group_ids, user_id)
        self.session.expire(document, ['assigned_groups'])

    def attach_file(self, document: Document, file: File, user_id: Optional[int] = None) -> None:
        self.session.add(MapDocumentFile(
            document_id=document.id,
            file_id=file.id,
            created_by=user_id,
            updated_by=user_id
        ))
        self.session.flush()
        self.session.expire(document, ['files'])

    def is_assigned_to_user(self, document_id: int, user_id: int) -> bool:
        query = select(func.count()).select_from(MapUserDocument).where(and_(
            MapUserDocument.document_id == document_id,
            MapUserDocument.user_id == user_id,
            MapUserDocument.status_id == RecordStatus.ACTIVE
        ))
        return self.session.execute(query).scalar_one() > 0

    def is_assigned_to_group(self, document_id: int, group_id: int) -> bool:
        query = select(func.count()).select_from(MapUserGroupDocument).where(and_(
            MapUserGroupDocument.document_id == document_id,
            MapUserGroupDocument.user_group_id == group_id,
            MapUserGroupDocument.status_id == RecordStatus.ACTIVE
        ))
        return self.session.execute(query).scalar_one() > 0


# ============================================
# LOOKUP REPOSITORY (reference data + pivots)
# ============================================

class LookupRepository:
    """
    Repository for the reference entities behind document metadata.

    Covers the policy -> loss -> claimant chain, producer/policy links,
    display labels that depend on pivot order, and dropdown searches.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_policy(self, policy_id: int) -> Optional[Policy]:
        return self.session.get(Policy, policy_id)

    def get_loss(self, loss_id: int) -> Optional[Loss]:
        return self.session.get(Loss, loss_id)

    def get_claimant(self, claimant_id: int) -> Optional[Claimant]:
        return self.session.get(Claimant, claimant_id)

    def get_producer(self, producer_id: int) -> Optional[Producer]:
        return self.session.get(Producer, producer_id)

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_group(self, group_id: int) -> Optional[UserGroup]:
        return self.session.get(UserGroup, group_id)

    # ------------------------------------------
    # Pivot creation (seeding, administration)
    # ------------------------------------------

    def _link(self, model, user_id: Optional[int] = None, **keys) -> Any:
        try:
            row = model(created_by=user_id, updated_by=user_id, **keys)
            self.session.add(row)
            self.session.flush()
            return row
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"{model.__tablename__} link already exists: {e}")

    def link_policy_loss(self, policy_id: int, loss_id: int, user_id: Optional[int] = None) -> MapPolicyLoss:
        return self._link(MapPolicyLoss, user_id, policy_id=policy_id, loss_id=loss_id)

    def link_loss_claimant(self, loss_id: int, claimant_id: int, user_id: Optional[int] = None) -> MapLossClaimant:
        return self._link(MapLossClaimant, user_id, loss_id=loss_id, claimant_id=claimant_id)

    def link_producer_policy(self, producer_id: int, policy_id: int, user_id: Optional[int] = None) -> MapProducerPolicy:
        return self._link(MapProducerPolicy, user_id, producer_id=producer_id, policy_id=policy_id)

    # ------------------------------------------
    # Relationship checks
    # ------------------------------------------

    def policy_has_loss(self, policy_id: int, loss_id: int) -> bool:
        """True if an active map_policy_loss row links the pair."""
        query = select(func.count()).select_from(MapPolicyLoss).where(and_(
            MapPolicyLoss.policy_id == policy_id,
            MapPolicyLoss.loss_id == loss_id,
            MapPolicyLoss.status_id == RecordStatus.ACTIVE
        ))
        return self.session.execute(query).scalar_one() > 0

    def loss_has_claimant(self, loss_id: int, claimant_id: int) -> bool:
        """True if an active map_loss_claimant row links the pair."""
        query = select(func.count()).select_from(MapLossClaimant).where(and_(
            MapLossClaimant.loss_id == loss_id,
            MapLossClaimant.claimant_id == claimant_id,
            MapLossClaimant.status_id == RecordStatus.ACTIVE
        ))
        return self.session.execute(query).scalar_one() > 0

    # ------------------------------------------
    # Sequence numbers and labels
    # ------------------------------------------

    def _sequence(self, model, parent_column: str, child_column: str, child_id: int,
                  parent_id: Optional[int]) -> int:
        """1-based position of child among its parent's links, by link creation."""
        link_query = select(model).where(getattr(model, child_column) == child_id)
        if parent_id is not None:
            link_query = link_query.where(getattr(model, parent_column) == parent_id)
        link = self.session.execute(
            link_query.order_by(model.created_at, model.id).limit(1)
        ).scalar_one_or_none()
        if link is None:
            return 1

        parent_value = getattr(link, parent_column)
        count_query = select(func.count()).select_from(model).where(and_(
            getattr(model, parent_column) == parent_value,
            or_(
                model.created_at < link.created_at,
                and_(model.created_at == link.created_at, model.id <= link.id)
            )
        ))
        return self.session.execute(count_query).scalar_one() or 1

    def loss_sequence(self, loss_id: int, policy_id: Optional[int] = None) -> int:
        return self._sequence(MapPolicyLoss, 'policy_id', 'loss_id', loss_id, policy_id)

    def claimant_sequence(self, claimant_id: int, loss_id: Optional[int] = None) -> int:
        return self._sequence(MapLossClaimant, 'loss_id', 'claimant_id', claimant_id, loss_id)

    def loss_label(self, loss: Loss, policy_id: Optional[int] = None) -> str:
        """'{seq} - {name} ({MM/DD/YYYY})'"""
        seq = self.loss_sequence(loss.id, policy_id)
        label = f"{seq} - {loss.name}"
        if loss.date:
            label += f" ({loss.formatted_date})"
        return label

    def claimant_label(self, claimant: Claimant, loss_id: Optional[int] = None) -> str:
        """'{seq} - {full_name}'"""
        return f"{self.claimant_sequence(claimant.id, loss_id)} - {claimant.full_name}"

    # ------------------------------------------
    # Option searches
    # ------------------------------------------

    @timed_query("search_policies")
    def search_policies(
        self,
        search: Optional[str] = None,
        producer_id: Optional[int] = None,
        limit: int = 25
    ) -> List[Policy]:
        """Active policies, optionally written by producer_id, matching search."""
        query = select(Policy).outerjoin(
            PolicyPrefix, Policy.policy_prefix_id == PolicyPrefix.id
        ).where(Policy.status_id == RecordStatus.ACTIVE)

        if producer_id:
            query = query.join(
                MapProducerPolicy, MapProducerPolicy.policy_id == Policy.id
            ).where(and_(
                MapProducerPolicy.producer_id == producer_id,
                MapProducerPolicy.status_id == RecordStatus.ACTIVE
            ))

        if search:
            pattern = _like(search)
            query = query.where(or_(
                Policy.number.ilike(pattern),
                (func.coalesce(PolicyPrefix.name, '') + Policy.number).ilike(pattern)
            ))

        query = query.order_by(Policy.number, Policy.id).limit(limit)
        return list(self.session.execute(query).scalars().unique().all())

    @timed_query("search_losses")
    def search_losses(
        self,
        policy_id: int,
        search: Optional[str] = None,
        limit: int = 25
    ) -> List[Loss]:
        """Active losses linked to policy_id, newest loss date first."""
        query = select(Loss).join(
            MapPolicyLoss, MapPolicyLoss.loss_id == Loss.id
        ).where(and_(
            MapPolicyLoss.policy_id == policy_id,
            MapPolicyLoss.status_id == RecordStatus.ACTIVE,
            Loss.status_id == RecordStatus.ACTIVE
        ))

        if search:
            query = query.where(Loss.name.ilike(_like(search)))

        query = query.order_by(Loss.date.desc(), Loss.id.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())

    @timed_query("search_claimants")
    def search_claimants(
        self,
        loss_id: int,
        search: Optional[str] = None,
        limit: int = 25
    ) -> List[Claimant]:
        """Active claimants linked to loss_id."""
        query = select(Claimant).join(
            MapLossClaimant, MapLossClaimant.claimant_id == Claimant.id
        ).where(and_(
            MapLossClaimant.loss_id == loss_id,
            MapLossClaimant.status_id == RecordStatus.ACTIVE,
            Claimant.status_id == RecordStatus.ACTIVE
        ))

        if search:
            pattern = _like(search)
            query = query.where(or_(
                Claimant.first_name.ilike(pattern),
                Claimant.last_name.ilike(pattern)
            ))

        query = query.order_by(MapLossClaimant.created_at, MapLossClaimant.id).limit(limit)
        return list(self.session.execute(query).scalars().all())

    def search_producers(self, search: Optional[str] = None, limit: int = 25) -> List[Producer]:
        query = select(Producer).where(Producer.status_id == RecordStatus.ACTIVE)
        if search:
            pattern = _like(search)
            query = query.where(or_(Producer.number.ilike(pattern), Producer.name.ilike(pattern)))
        query = query.order_by(Producer.number, Producer.id).limit(limit)
        return list(self.session.execute(query).scalars().all())

    def search_users(self, search: Optional[str] = None, limit: int = 25) -> List[User]:
        query = select(User).where(User.status_id == RecordStatus.ACTIVE)
        if search:
            pattern = _like(search)
            query = query.where(or_(
                User.username.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern)
            ))
        query = query.order_by(User.last_name, User.first_name, User.id).limit(limit)
        return list(self.session.execute(query).scalars().unique().all())

    def search_user_groups(self, search: Optional[str] = None, limit: int = 25) -> List[UserGroup]:
        query = select(UserGroup).where(UserGroup.status_id == RecordStatus.ACTIVE)
        if search:
            query = query.where(UserGroup.name.ilike(_like(search)))
        query = query.order_by(UserGroup.name).limit(limit)
        return list(self.session.execute(query).scalars().unique().all())


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for the append-only document audit trail."""

    def __init__(self, session: Session):
        self.session = session

    def ensure_action_types(self) -> List[ActionType]:
        """Seed the fixed action type catalogue; existing rows are kept."""
        existing = {
            action_type.name: action_type
            for action_type in self.session.execute(select(ActionType)).scalars()
        }
        for name in ActionTypeName:
            if name.value not in existing:
                action_type = ActionType(
                    name=name.value,
                    description=ACTION_TYPE_DESCRIPTIONS[name]
                )
                self.session.add(action_type)
                existing[name.value] = action_type
        self.session.flush()
        return list(existing.values())

    def get_action_type(self, name: str) -> Optional[ActionType]:
        query = select(ActionType).where(ActionType.name == name)
        return self.session.execute(query).scalar_one_or_none()

    def list_action_types(self) -> List[ActionType]:
        return list(self.session.execute(select(ActionType).order_by(ActionType.id)).scalars().all())

    def create_action(
        self,
        document_id: int,
        action_type: ActionType,
        user_id: int,
        description: str
    ) -> Action:
        """
        Create an Action and link it to the document.

        Both rows are flushed in the caller's transaction.
        """
        action = Action(
            action_type_id=action_type.id,
            description=description,
            status_id=RecordStatus.ACTIVE,
            created_by=user_id,
            updated_by=user_id
        )
        self.session.add(action)
        self.session.flush()

        self.session.add(MapDocumentAction(
            document_id=document_id,
            action_id=action.id,
            status_id=RecordStatus.ACTIVE,
            created_by=user_id,
            updated_by=user_id
        ))
        self.session.flush()

        logger.debug(f"Action {action.id} ({action_type.name}) recorded for document {document_id}")
        return action

    def _history_query(self, document_id: int, action_type_id: Optional[int] = None):
        query = select(MapDocumentAction).join(
            Action, MapDocumentAction.action_id == Action.id
        ).where(MapDocumentAction.document_id == document_id)
        if action_type_id:
            query = query.where(Action.action_type_id == action_type_id)
        return query

    @timed_query("document_history")
    def history(
        self,
        document_id: int,
        offset: int = 0,
        limit: int = 10,
        direction: str = 'desc',
        action_type_id: Optional[int] = None
    ) -> Tuple[List[MapDocumentAction], int]:
        """
        Audit rows for a document ordered by action creation time.

        Returns:
            Tuple of (pivot rows with their action loaded, total count)
        """
        base = self._history_query(document_id, action_type_id)
        total = self.session.execute(
            select(func.count()).select_from(base.subquery())
        ).scalar_one()

        if direction == 'asc':
            order = (Action.created_at.asc(), Action.id.asc())
        else:
            order = (Action.created_at.desc(), Action.id.desc())

        rows = self.session.execute(
            base.order_by(*order).offset(offset).limit(limit)
        ).scalars().unique().all()
        return list(rows), total

    def last_action(self, document_id: int) -> Optional[Action]:
        query = select(Action).join(
            MapDocumentAction, MapDocumentAction.action_id == Action.id
        ).where(
            MapDocumentAction.document_id == document_id
        ).order_by(Action.created_at.desc(), Action.id.desc()).limit(1)
        return self.session.execute(query).unique().scalar_one_or_none()

    def count_by_action_type(self, document_id: int) -> List[Tuple[ActionType, int]]:
        """Every action type with its number of actions for the document."""
        counts = dict(self.session.execute(
            select(Action.action_type_id, func.count(Action.id)).join(
                MapDocumentAction, MapDocumentAction.action_id == Action.id
            ).where(
                MapDocumentAction.document_id == document_id
            ).group_by(Action.action_type_id)
        ).all())
        return [(action_type, counts.get(action_type.id, 0)) for action_type in self.list_action_types()]


# ============================================
# FILE REPOSITORY
# ============================================

class FileRepository:
    """Repository for stored file records."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, file_id: int, active_only: bool = True) -> Optional[File]:
        query = select(File).where(File.id == file_id)
        if active_only:
            query = query.where(File.status_id == RecordStatus.ACTIVE)
        return self.session.execute(query).scalar_one_or_none()

    def create(
        self,
        name: str,
        path: str,
        mime_type: str,
        size: int,
        user_id: Optional[int] = None
    ) -> File:
        file = File(
            name=name,
            path=path,
            mime_type=mime_type,
            size=size,
            created_by=user_id,
            updated_by=user_id
        )
        self.session.add(file)
        self.session.flush()
        return file

    def deactivate(self, file: File, user_id: Optional[int] = None) -> File:
        file.status_id = RecordStatus.INACTIVE
        file.updated_by = user_id
        self.session.flush()
        return file
