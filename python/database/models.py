"""
SQLAlchemy ORM Models for the Documents View system

This module defines the relational schema behind the documents back office:
- Reference entities (policies, losses, claimants, producers, users, groups)
- Many-to-many pivot ("map_*") tables carrying their own status/audit columns
- Documents with a processed/trashed lifecycle and soft delete
- Append-only audit trail (actions, action types, document/action pivot)

Models are plain data records. Anything that needs a query (loss and
claimant sequence numbers, option lists, history) lives in
database/repositories.py.

Tables:
1. policy_prefix - Prefixes used to format policy numbers
2. policy - Insurance policies
3. loss - Losses reported against policies
4. claimant - Claimants attached to losses
5. producer - Producers (agents) writing policies
6. user_group - Groups documents can be assigned to
7. user - Back-office users with a role
8. file - Stored document files
9. document - Documents under review
10. action_type - Fixed catalogue of audit action names
11. action - Audit trail rows
12. map_policy_loss / map_loss_claimant / map_producer_policy
13. map_document_action / map_user_document / map_user_group_document / map_document_file
"""

from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Date, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, and_
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


def utc_now() -> datetime:
    """Current UTC time (Python-side default with sub-second precision)."""
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class RecordStatus(int, PyEnum):
    """Status of reference entities and pivot rows"""
    ACTIVE = 1
    INACTIVE = 2


class DocumentStatus(int, PyEnum):
    """Lifecycle status of a document"""
    UNPROCESSED = 1
    PROCESSED = 2
    TRASHED = 3


class UserRole(int, PyEnum):
    """Role of a back-office user"""
    ADMIN = 1
    MANAGER = 2
    ADJUSTER = 3
    UNDERWRITER = 4
    SUPPORT = 5
    READONLY = 6


class ActionTypeName(str, PyEnum):
    """Names of the seeded audit action types"""
    VIEW = "view"
    EDIT = "edit"
    PROCESS = "process"
    UNPROCESS = "unprocess"
    TRASH = "trash"
    RESTORE = "restore"
    CUSTOM = "custom"


ACTION_TYPE_DESCRIPTIONS = {
    ActionTypeName.VIEW: "Document viewed",
    ActionTypeName.EDIT: "Document metadata edited",
    ActionTypeName.PROCESS: "Document marked as processed",
    ActionTypeName.UNPROCESS: "Document marked as unprocessed",
    ActionTypeName.TRASH: "Document moved to trash",
    ActionTypeName.RESTORE: "Document restored from trash",
    ActionTypeName.CUSTOM: "Custom document action",
}


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin for soft delete support"""
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )


class RecordMixin(TimestampMixin):
    """Status and audit columns shared by reference entities and pivots"""
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status_id: Mapped[int] = mapped_column(
        Integer,
        default=RecordStatus.ACTIVE,
        nullable=False,
        index=True
    )
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status_id == RecordStatus.ACTIVE


# ============================================
# REFERENCE ENTITIES
# ============================================

class PolicyPrefix(Base, RecordMixin):
    """Prefix prepended to a policy number (e.g. 'PLCY-')."""
    __tablename__ = "policy_prefix"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<PolicyPrefix(id={self.id}, name='{self.name}')>"


class Policy(Base, RecordMixin):
    """
    Insurance policy.

    The policy number shown to users is the prefix name followed by the
    number (see formatted_number).
    """
    __tablename__ = "policy"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    policy_prefix_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("policy_prefix.id"),
        nullable=True
    )
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    inception_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    prefix: Mapped[Optional["PolicyPrefix"]] = relationship("PolicyPrefix", lazy="joined")

    @property
    def formatted_number(self) -> str:
        if self.prefix is not None:
            return f"{self.prefix.name}{self.number}"
        return self.number

    @property
    def display_name(self) -> str:
        return self.formatted_number

    def __repr__(self) -> str:
        return f"<Policy(id={self.id}, number='{self.formatted_number}')>"


class Loss(Base, RecordMixin):
    """Loss reported against one or more policies (linked via map_policy_loss)."""
    __tablename__ = "loss"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    @property
    def formatted_date(self) -> str:
        return self.date.strftime("%m/%d/%Y") if self.date else ""

    def __repr__(self) -> str:
        return f"<Loss(id={self.id}, name='{self.name}')>"


class Claimant(Base, RecordMixin):
    """Claimant attached to one or more losses (linked via map_loss_claimant)."""
    __tablename__ = "claimant"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or "Unnamed Claimant"

    def __repr__(self) -> str:
        return f"<Claimant(id={self.id}, name='{self.full_name}')>"


class Producer(Base, RecordMixin):
    """Producer (agent) that writes policies."""
    __tablename__ = "producer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    @property
    def display_name(self) -> str:
        return f"{self.number} - {self.name}"

    def __repr__(self) -> str:
        return f"<Producer(id={self.id}, number='{self.number}')>"


class UserGroup(Base, RecordMixin):
    """Group of users that documents can be assigned to."""
    __tablename__ = "user_group"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    users: Mapped[List["User"]] = relationship("User", back_populates="group")

    @property
    def display_name(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<UserGroup(id={self.id}, name='{self.name}')>"


class User(Base, RecordMixin):
    """Back-office user."""
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_role_id: Mapped[int] = mapped_column(
        Integer,
        default=UserRole.READONLY,
        nullable=False,
        index=True
    )
    user_group_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("user_group.id"),
        nullable=True,
        index=True
    )

    group: Mapped[Optional["UserGroup"]] = relationship("UserGroup", back_populates="users")

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.username

    @property
    def display_name(self) -> str:
        return self.full_name

    def has_role(self, *roles: UserRole) -> bool:
        return self.user_role_id in roles

    @property
    def is_admin(self) -> bool:
        return self.user_role_id == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role={self.user_role_id})>"


class File(Base, RecordMixin):
    """Stored file; path is relative to the storage root."""
    __tablename__ = "file"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(String(1000), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1].lower() if "." in self.name else ""

    @property
    def formatted_size(self) -> str:
        size = float(self.size or 0)
        for unit in ("B", "KB", "MB", "GB"):
            if size < 1024 or unit == "GB":
                return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
            size /= 1024
        return f"{size:.2f} GB"

    def __repr__(self) -> str:
        return f"<File(id={self.id}, name='{self.name}', mime_type='{self.mime_type}')>"


# ============================================
# PIVOT TABLES
# ============================================

class MapPolicyLoss(Base, RecordMixin):
    """Links a loss to a policy. Creation order defines the loss sequence."""
    __tablename__ = "map_policy_loss"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    policy_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("policy.id", ondelete="CASCADE"), nullable=False
    )
    loss_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("loss.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('policy_id', 'loss_id', name='uq_map_policy_loss'),
        Index('ix_map_policy_loss_loss', 'loss_id'),
    )


class MapLossClaimant(Base, RecordMixin):
    """Links a claimant to a loss. Creation order defines the claimant sequence."""
    __tablename__ = "map_loss_claimant"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    loss_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("loss.id", ondelete="CASCADE"), nullable=False
    )
    claimant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("claimant.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('loss_id', 'claimant_id', name='uq_map_loss_claimant'),
        Index('ix_map_loss_claimant_claimant', 'claimant_id'),
    )


class MapProducerPolicy(Base, RecordMixin):
    """Links a policy to the producer that wrote it."""
    __tablename__ = "map_producer_policy"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    producer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("producer.id", ondelete="CASCADE"), nullable=False
    )
    policy_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("policy.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('producer_id', 'policy_id', name='uq_map_producer_policy'),
        Index('ix_map_producer_policy_policy', 'policy_id'),
    )


class MapUserDocument(Base, RecordMixin):
    """Assigns a document to a user."""
    __tablename__ = "map_user_document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("document.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'document_id', name='uq_map_user_document'),
        Index('ix_map_user_document_document', 'document_id'),
    )


class MapUserGroupDocument(Base, RecordMixin):
    """Assigns a document to a user group."""
    __tablename__ = "map_user_group_document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_group.id", ondelete="CASCADE"), nullable=False
    )
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("document.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('user_group_id', 'document_id', name='uq_map_user_group_document'),
        Index('ix_map_user_group_document_document', 'document_id'),
    )


class MapDocumentFile(Base, RecordMixin):
    """Attaches a stored file to a document."""
    __tablename__ = "map_document_file"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("document.id", ondelete="CASCADE"), nullable=False
    )
    file_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("file.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('document_id', 'file_id', name='uq_map_document_file'),
    )


class MapDocumentAction(Base, RecordMixin):
    """Links an audit action to the document it was performed on."""
    __tablename__ = "map_document_action"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("document.id", ondelete="CASCADE"), nullable=False
    )
    action_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("action.id", ondelete="CASCADE"), nullable=False
    )

    action: Mapped["Action"] = relationship("Action", lazy="joined")

    __table_args__ = (
        UniqueConstraint('document_id', 'action_id', name='uq_map_document_action'),
        Index('ix_map_document_action_document', 'document_id'),
    )


# ============================================
# DOCUMENT
# ============================================

class Document(Base, TimestampMixin, SoftDeleteMixin):
    """
    Document under review.

    Metadata (policy/loss/claimant/producer, description, assignments) is
    immutable while the document is processed. Trashing sets the trashed
    status and soft deletes the row; restoring reverses both.
    """
    __tablename__ = "document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_received: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    signature_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status_id: Mapped[int] = mapped_column(
        Integer,
        default=DocumentStatus.UNPROCESSED,
        nullable=False,
        index=True
    )

    policy_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("policy.id"), nullable=True, index=True
    )
    loss_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("loss.id"), nullable=True, index=True
    )
    claimant_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("claimant.id"), nullable=True, index=True
    )
    producer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("producer.id"), nullable=True, index=True
    )

    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("user.id"), nullable=True
    )
    updated_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("user.id"), nullable=True
    )

    # Relationships
    policy: Mapped[Optional["Policy"]] = relationship("Policy", lazy="selectin")
    loss: Mapped[Optional["Loss"]] = relationship("Loss", lazy="selectin")
    claimant: Mapped[Optional["Claimant"]] = relationship("Claimant", lazy="selectin")
    producer: Mapped[Optional["Producer"]] = relationship("Producer", lazy="selectin")
    creator: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[created_by], lazy="selectin"
    )
    updater: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[updated_by], lazy="selectin"
    )

    # Pivot rows are written by the repositories; these are read views over active rows
    assigned_users: Mapped[List["User"]] = relationship(
        "User",
        secondary="map_user_document",
        primaryjoin=lambda: and_(
            Document.id == MapUserDocument.document_id,
            MapUserDocument.status_id == RecordStatus.ACTIVE
        ),
        secondaryjoin=lambda: User.id == MapUserDocument.user_id,
        order_by="User.id",
        viewonly=True,
        lazy="selectin"
    )
    assigned_groups: Mapped[List["UserGroup"]] = relationship(
        "UserGroup",
        secondary="map_user_group_document",
        primaryjoin=lambda: and_(
            Document.id == MapUserGroupDocument.document_id,
            MapUserGroupDocument.status_id == RecordStatus.ACTIVE
        ),
        secondaryjoin=lambda: UserGroup.id == MapUserGroupDocument.user_group_id,
        order_by="UserGroup.id",
        viewonly=True,
        lazy="selectin"
    )
    files: Mapped[List["File"]] = relationship(
        "File",
        secondary="map_document_file",
        order_by="File.id",
        viewonly=True,
        lazy="selectin"
    )

    __table_args__ = (
        Index('ix_document_status_created', 'status_id', 'created_at'),
        Index('ix_document_policy_loss', 'policy_id', 'loss_id'),
    )

    @property
    def is_processed(self) -> bool:
        return self.status_id == DocumentStatus.PROCESSED

    @property
    def is_trashed(self) -> bool:
        return self.status_id == DocumentStatus.TRASHED or bool(self.is_deleted)

    @property
    def policy_number(self) -> Optional[str]:
        return self.policy.formatted_number if self.policy else None

    @property
    def producer_number(self) -> Optional[str]:
        return self.producer.number if self.producer else None

    @property
    def assigned_to(self) -> str:
        names = [user.full_name for user in self.assigned_users]
        names.extend(group.name for group in self.assigned_groups)
        return ", ".join(names)

    @property
    def main_file(self) -> Optional["File"]:
        return self.files[0] if self.files else None

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, name='{self.name}', status={self.status_id})>"


# ============================================
# AUDIT TRAIL
# ============================================

class ActionType(Base, TimestampMixin):
    """Catalogue of audit action names (view, edit, process, ...)."""
    __tablename__ = "action_type"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<ActionType(id={self.id}, name='{self.name}')>"


class Action(Base, TimestampMixin):
    """
    One user-attributed operation on one or more documents.

    Append-only: rows are never updated by the application.
    """
    __tablename__ = "action"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("action_type.id"), nullable=False, index=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status_id: Mapped[int] = mapped_column(
        Integer, default=RecordStatus.ACTIVE, nullable=False
    )
    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("user.id"), nullable=True, index=True
    )
    updated_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("user.id"), nullable=True
    )

    action_type: Mapped["ActionType"] = relationship("ActionType", lazy="joined")
    user: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[created_by], lazy="joined"
    )

    __table_args__ = (
        Index('ix_action_created_at', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<Action(id={self.id}, type_id={self.action_type_id}, created_by={self.created_by})>"
