"""Initial privacy dashboard schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, applications, consent ledger, requests, messages, notices, notifications, audit."""

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('username', sa.String(128), nullable=False, unique=True, comment='Login name'),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('mail', sa.String(320), nullable=True),
        sa.Column('role', sa.String(32), nullable=False, comment='subject | controller | dpo (immutable)'),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'applications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('questionnaire_vote', sa.String(16), nullable=True),
        sa.Column('detail_vote', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('optional_answers', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'user_app_relations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_user_app_relations_user_id', 'user_app_relations', ['user_id'])
    op.create_index('ix_user_app_relations_application_id', 'user_app_relations', ['application_id'])
    op.create_index('ix_user_app_unique', 'user_app_relations', ['user_id', 'application_id'], unique=True)

    op.create_table(
        'consents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('purpose', sa.String(255), nullable=False),
        sa.Column('granted', sa.Boolean(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['subject_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_consents_subject_id', 'consents', ['subject_id'])
    op.create_index(
        'ix_consents_subject_app_purpose',
        'consents',
        ['subject_id', 'application_id', 'purpose'],
        unique=True,
    )

    op.create_table(
        'consent_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('purpose', sa.String(255), nullable=False),
        sa.Column('action', sa.String(16), nullable=False, comment='granted | revoked | erased'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_consent_events_subject_id', 'consent_events', ['subject_id'])
    op.create_index('ix_consent_events_subject_time', 'consent_events', ['subject_id', 'occurred_at'])

    op.create_table(
        'gdpr_requests',
        sa.Column('id', sa.Uuid(), primary_key=True, comment='GDPR request primary key'),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('request_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='pending'),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('other', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('responded_by', sa.Uuid(), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['subject_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['responded_by'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_gdpr_requests_subject_id', 'gdpr_requests', ['subject_id'])
    op.create_index('ix_gdpr_requests_application_id', 'gdpr_requests', ['application_id'])
    op.create_index('ix_gdpr_requests_app_status', 'gdpr_requests', ['application_id', 'status'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('ix_messages_recipient_id', 'messages', ['recipient_id'])
    op.create_index('ix_messages_pair_time', 'messages', ['sender_id', 'recipient_id', 'created_at'])

    op.create_table(
        'privacy_notices',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('application_id', sa.Uuid(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('published_by', sa.Uuid(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['published_by'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index(
        'ix_privacy_notices_app_version',
        'privacy_notices',
        ['application_id', 'version'],
        unique=True,
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=True),
        sa.Column('kind', sa.String(64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('object_id', sa.String(64), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_notifications_recipient_read', 'notifications', ['recipient_id', 'is_read'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('action', sa.String(128), nullable=False),
        sa.Column('resource_type', sa.String(64), nullable=True),
        sa.Column('resource_id', sa.String(128), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='success'),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('extra', postgresql.JSONB(), nullable=False, server_default='{}'),
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_actor_timestamp', 'audit_logs', ['actor_id', 'timestamp'])


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('privacy_notices')
    op.drop_table('messages')
    op.drop_table('gdpr_requests')
    op.drop_table('consent_events')
    op.drop_table('consents')
    op.drop_table('user_app_relations')
    op.drop_table('applications')
    op.drop_table('users')
