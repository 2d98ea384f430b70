"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-12-01 00:00:00.000000

This is the baseline migration that creates all tables for the Documents
View system. It corresponds to the models in database/models.py.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import List, Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTION_TYPES = [
    ('view', 'Document viewed'),
    ('edit', 'Document metadata edited'),
    ('process', 'Document marked as processed'),
    ('unprocess', 'Document marked as unprocessed'),
    ('trash', 'Document moved to trash'),
    ('restore', 'Document restored from trash'),
    ('custom', 'Custom document action'),
]


def _timestamps() -> List[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _record_columns() -> List[sa.Column]:
    """Status and audit columns shared by reference tables and pivots."""
    return [
        sa.Column('description', sa.String(500)),
        sa.Column('status_id', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_by', sa.Integer),
        sa.Column('updated_by', sa.Integer),
        *_timestamps(),
    ]


def _pivot(name: str, left: str, left_table: str, right: str, right_table: str, index_right: bool = True) -> None:
    op.create_table(
        name,
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(left, sa.Integer, sa.ForeignKey(f'{left_table}.id', ondelete='CASCADE'), nullable=False),
        sa.Column(right, sa.Integer, sa.ForeignKey(f'{right_table}.id', ondelete='CASCADE'), nullable=False),
        *_record_columns(),
        sa.UniqueConstraint(left, right, name=f'uq_{name}'),
    )
    op.create_index(f'ix_{name}_status_id', name, ['status_id'])
    if index_right:
        op.create_index(f'ix_{name}_{right_table}', name, [right])


def upgrade() -> None:
    """Create initial database schema."""

    # Reference data
    op.create_table(
        'policy_prefix',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(50), nullable=False, unique=True),
        *_record_columns(),
    )

    op.create_table(
        'policy',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('number', sa.String(100), nullable=False),
        sa.Column('policy_prefix_id', sa.Integer, sa.ForeignKey('policy_prefix.id')),
        sa.Column('effective_date', sa.Date),
        sa.Column('inception_date', sa.Date),
        sa.Column('expiration_date', sa.Date),
        *_record_columns(),
    )
    op.create_index('ix_policy_number', 'policy', ['number'])
    op.create_index('ix_policy_status_id', 'policy', ['status_id'])

    op.create_table(
        'loss',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('date', sa.Date),
        *_record_columns(),
    )
    op.create_index('ix_loss_date', 'loss', ['date'])
    op.create_index('ix_loss_status_id', 'loss', ['status_id'])

    op.create_table(
        'claimant',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        *_record_columns(),
    )
    op.create_index('ix_claimant_status_id', 'claimant', ['status_id'])

    op.create_table(
        'producer',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('number', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        *_record_columns(),
    )
    op.create_index('ix_producer_number', 'producer', ['number'])
    op.create_index('ix_producer_status_id', 'producer', ['status_id'])

    # Users
    op.create_table(
        'user_group',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        *_record_columns(),
    )

    op.create_table(
        'user',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('email', sa.String(255)),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('user_role_id', sa.Integer, nullable=False, server_default='6'),
        sa.Column('user_group_id', sa.Integer, sa.ForeignKey('user_group.id')),
        *_record_columns(),
    )
    op.create_index('ix_user_user_role_id', 'user', ['user_role_id'])
    op.create_index('ix_user_user_group_id', 'user', ['user_group_id'])
    op.create_index('ix_user_status_id', 'user', ['status_id'])

    op.create_table(
        'file',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('path', sa.String(1000), nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=False),
        sa.Column('size', sa.BigInteger, nullable=False, server_default='0'),
        *_record_columns(),
    )

    # Documents
    op.create_table(
        'document',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('date_received', sa.Date),
        sa.Column('description', sa.String(255)),
        sa.Column('signature_required', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('status_id', sa.Integer, nullable=False, server_default='1'),
        sa.Column('policy_id', sa.Integer, sa.ForeignKey('policy.id')),
        sa.Column('loss_id', sa.Integer, sa.ForeignKey('loss.id')),
        sa.Column('claimant_id', sa.Integer, sa.ForeignKey('claimant.id')),
        sa.Column('producer_id', sa.Integer, sa.ForeignKey('producer.id')),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('user.id')),
        sa.Column('updated_by', sa.Integer, sa.ForeignKey('user.id')),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index('ix_document_status_id', 'document', ['status_id'])
    op.create_index('ix_document_policy_id', 'document', ['policy_id'])
    op.create_index('ix_document_loss_id', 'document', ['loss_id'])
    op.create_index('ix_document_claimant_id', 'document', ['claimant_id'])
    op.create_index('ix_document_producer_id', 'document', ['producer_id'])
    op.create_index('ix_document_is_deleted', 'document', ['is_deleted'])
    op.create_index('ix_document_status_created', 'document', ['status_id', 'created_at'])
    op.create_index('ix_document_policy_loss', 'document', ['policy_id', 'loss_id'])

    # Audit trail
    action_type = op.create_table(
        'action_type',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.String(255)),
        *_timestamps(),
    )

    op.create_table(
        'action',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('action_type_id', sa.Integer, sa.ForeignKey('action_type.id'), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status_id', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('user.id')),
        sa.Column('updated_by', sa.Integer, sa.ForeignKey('user.id')),
        *_timestamps(),
    )
    op.create_index('ix_action_action_type_id', 'action', ['action_type_id'])
    op.create_index('ix_action_created_by', 'action', ['created_by'])
    op.create_index('ix_action_created_at', 'action', ['created_at'])

    # Pivot tables
    _pivot('map_policy_loss', 'policy_id', 'policy', 'loss_id', 'loss')
    _pivot('map_loss_claimant', 'loss_id', 'loss', 'claimant_id', 'claimant')
    _pivot('map_producer_policy', 'producer_id', 'producer', 'policy_id', 'policy')
    _pivot('map_user_document', 'user_id', 'user', 'document_id', 'document')
    _pivot('map_user_group_document', 'user_group_id', 'user_group', 'document_id', 'document')
    _pivot('map_document_file', 'document_id', 'document', 'file_id', 'file', index_right=False)
    _pivot('map_document_action', 'document_id', 'document', 'action_id', 'action', index_right=False)
    op.create_index('ix_map_document_action_document', 'map_document_action', ['document_id'])

    # Seed the action type catalogue
    op.bulk_insert(action_type, [
        {'name': name, 'description': description}
        for name, description in ACTION_TYPES
    ])


def downgrade() -> None:
    """Drop all tables."""
    for table in (
        'map_document_action',
        'map_document_file',
        'map_user_group_document',
        'map_user_document',
        'map_producer_policy',
        'map_loss_claimant',
        'map_policy_loss',
        'action',
        'action_type',
        'document',
        'file',
        'user',
        'user_group',
        'producer',
        'claimant',
        'loss',
        'policy',
        'policy_prefix',
    ):
        op.drop_table(table)
