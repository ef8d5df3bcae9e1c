"""initial permission, sequence and provisioning tables

Revision ID: 0001_initial_core
Revises: 
Create Date: 2026-10-18
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=False, unique=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('primary_role', sa.String(length=32)),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )
    op.create_index('ix_users_code', 'users', ['code'])
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table('user_role_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('departments', sa.JSON(), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=True, server_default=sa.text('0')),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_role_assignment')
    )
    op.create_index('ix_user_role_assignments_user_id', 'user_role_assignments', ['user_id'])

    op.create_table('user_permission_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('module', sa.String(length=32), nullable=False),
        sa.Column('actions', sa.JSON(), nullable=True),
        sa.UniqueConstraint('user_id', 'module', name='uq_user_override_module')
    )
    op.create_index('ix_user_permission_overrides_user_id', 'user_permission_overrides', ['user_id'])

    op.create_table('sequences',
        sa.Column('key', sa.String(length=32), primary_key=True),
        sa.Column('prefix', sa.String(length=16), nullable=False),
        sa.Column('padding', sa.Integer(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now())
    )

    op.create_table('provisioning_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('requested_by', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('requested_by_uid', sa.String(length=64)),
        sa.Column('requester_claims', sa.JSON(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('error', sa.String(length=64)),
        sa.Column('created_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True))
    )
    op.create_index('ix_provisioning_requests_state', 'provisioning_requests', ['state'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        sa.Column('roles_snapshot', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now())
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_index('ix_audit_logs_actor_user_id', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_provisioning_requests_state', table_name='provisioning_requests')
    op.drop_table('provisioning_requests')
    op.drop_table('sequences')
    op.drop_index('ix_user_permission_overrides_user_id', table_name='user_permission_overrides')
    op.drop_table('user_permission_overrides')
    op.drop_index('ix_user_role_assignments_user_id', table_name='user_role_assignments')
    op.drop_table('user_role_assignments')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_code', table_name='users')
    op.drop_table('users')
