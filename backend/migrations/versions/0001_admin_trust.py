"""admin trust tables: rbac catalog, assignments, hash-chained audit log

Revision ID: 0001_admin_trust
Revises: 
Create Date: 2026-10-18
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_admin_trust'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('admin_permissions',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('key', sa.String(length=128), nullable=False, unique=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=32), nullable=False)
    )
    op.create_index('ix_admin_permissions_key', 'admin_permissions', ['key'])
    op.create_index('ix_admin_permissions_category', 'admin_permissions', ['category'])

    op.create_table('admin_roles',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table('users',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=True, unique=True),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=True)
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table('admin_role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role_id', sa.String(length=64), sa.ForeignKey('admin_roles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permission_id', sa.String(length=64), sa.ForeignKey('admin_permissions.id', ondelete='CASCADE'), nullable=False)
    )
    op.create_index('ix_admin_role_permissions_role_id', 'admin_role_permissions', ['role_id'])
    # unique constraint handled via batch for sqlite
    with op.batch_alter_table('admin_role_permissions') as batch_op:
        batch_op.create_unique_constraint('uq_admin_role_permission', ['role_id', 'permission_id'])

    op.create_table('admin_user_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('role_id', sa.String(length=64), sa.ForeignKey('admin_roles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
    )
    op.create_index('ix_admin_user_roles_user_id', 'admin_user_roles', ['user_id'])
    with op.batch_alter_table('admin_user_roles') as batch_op:
        batch_op.create_unique_constraint('uq_admin_user_role', ['user_id', 'role_id'])

    op.create_table('admin_audit_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=128), nullable=False),
        sa.Column('target_type', sa.String(length=64), nullable=True),
        sa.Column('target_id', sa.String(length=128), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('before_json', sa.Text(), nullable=True),
        sa.Column('after_json', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('hash_prev', sa.String(length=64), nullable=False),
        sa.Column('hash_curr', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.String(length=32), nullable=False),
        sa.UniqueConstraint('hash_prev', name='uq_admin_audit_hash_prev')
    )
    op.create_index('ix_admin_audit_log_actor_id', 'admin_audit_log', ['actor_id'])
    op.create_index('ix_admin_audit_log_action', 'admin_audit_log', ['action'])
    op.create_index('ix_admin_audit_log_created_at', 'admin_audit_log', ['created_at'])
    op.create_index('ix_admin_audit_target', 'admin_audit_log', ['target_type', 'target_id'])


def downgrade():
    for tbl in ['admin_audit_log', 'admin_user_roles', 'admin_role_permissions', 'users', 'admin_roles', 'admin_permissions']:
        op.drop_table(tbl)
