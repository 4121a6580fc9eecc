"""initial schema: users, goals, daily submissions, payments, admin audit

Revision ID: 001
Revises:
Create Date: 2025-01-06 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('role', sa.String(40), nullable=False, server_default='STUDENT'),
        sa.Column('timezone', sa.Text(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'goals',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('duration_days', sa.Integer(), nullable=False),
        sa.Column('stake_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(40), nullable=False, server_default='PENDING_INSTRUCTOR_ASSIGNMENT'),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('instructor_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('user_id <> instructor_id', name='ck_goals_instructor_not_owner'),
    )
    op.create_index('ix_goals_status', 'goals', ['status'])
    op.create_index('ix_goals_user_id', 'goals', ['user_id'])
    op.create_index('ix_goals_instructor_id', 'goals', ['instructor_id'])

    op.create_table(
        'daily_submissions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('goal_id', sa.Uuid(), sa.ForeignKey('goals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('submission_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('submission_day', sa.Date(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(40), nullable=False, server_default='PENDING'),
        sa.Column('reviewer_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reviewer_comment', sa.Text(), nullable=True),
        sa.UniqueConstraint('goal_id', 'submission_day', name='uq_daily_submissions_goal_day'),
    )
    op.create_index('ix_daily_submissions_goal_id', 'daily_submissions', ['goal_id'])
    op.create_index('ix_daily_submissions_status', 'daily_submissions', ['status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('goal_id', sa.Uuid(), sa.ForeignKey('goals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(40), nullable=False, server_default='stripe'),
        sa.Column('provider_charge_id', sa.Text(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.Text(), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(40), nullable=False, server_default='HELD'),
        sa.Column('type', sa.Text(), nullable=False, server_default='STAKE'),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_payments_goal_id', 'payments', ['goal_id'], unique=True)
    op.create_index('ix_payments_provider_charge_id', 'payments', ['provider_charge_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    op.create_table(
        'admin_audit_event',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('actor_user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('target_type', sa.Text(), nullable=True),
        sa.Column('target_id', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
    )
    op.create_index('ix_admin_audit_event_created_at', 'admin_audit_event', ['created_at'])
    op.create_index('ix_admin_audit_event_actor_user_id', 'admin_audit_event', ['actor_user_id'])
    op.create_index('ix_admin_audit_event_action', 'admin_audit_event', ['action'])
    op.create_index('ix_admin_audit_event_target_id', 'admin_audit_event', ['target_id'])
    op.create_index('ix_admin_audit_event_target', 'admin_audit_event', ['target_type', 'target_id'])


def downgrade() -> None:
    op.drop_table('admin_audit_event')
    op.drop_table('payments')
    op.drop_table('daily_submissions')
    op.drop_table('goals')
    op.drop_table('users')
