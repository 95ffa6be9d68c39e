"""Initial planets schema

Revision ID: a1f3c5e7d9b2
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates:
- users, revoked_tokens (identity)
- planets, planet_collaborators (membership)
- planet_columns, planet_tasks (ranked tasks per column)
- planet_invites
"""
from alembic import op
import sqlalchemy as sa

revision = 'a1f3c5e7d9b2'
down_revision = None
branch_labels = None
depends_on = None

global_role = sa.Enum('USER', 'ADMIN', name='globalrole')
planet_role = sa.Enum('OWNER', 'COLLABORATOR', name='planetrole')


def upgrade() -> None:
    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('pfp_link', sa.String(), nullable=False),
        sa.Column('role', global_role, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    # ---- revoked_tokens ----
    op.create_table(
        'revoked_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('jti', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True)),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_revoked_tokens_jti', 'revoked_tokens', ['jti'], unique=True)

    # ---- planets ----
    op.create_table(
        'planets',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('color', sa.String(), nullable=False),
        sa.Column('theme', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )

    # ---- planet_collaborators ----
    op.create_table(
        'planet_collaborators',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('planet_id', sa.String(), sa.ForeignKey('planets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', planet_role, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('planet_id', 'user_id', name='uq_planet_member'),
    )
    op.create_index('ix_planet_collaborators_planet_id', 'planet_collaborators', ['planet_id'])
    op.create_index('ix_planet_collaborators_user_id', 'planet_collaborators', ['user_id'])
    op.create_index('idx_collab_planet_role', 'planet_collaborators', ['planet_id', 'role'])

    # ---- planet_columns ----
    op.create_table(
        'planet_columns',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('planet_id', sa.String(), sa.ForeignKey('planets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_planet_columns_planet_id', 'planet_columns', ['planet_id'])

    # ---- planet_tasks ----
    op.create_table(
        'planet_tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('column_id', sa.String(), sa.ForeignKey('planet_columns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('content', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_planet_tasks_assigned_user_id', 'planet_tasks', ['assigned_user_id'])
    op.create_index('idx_task_column_order', 'planet_tasks', ['column_id', 'order'])

    # ---- planet_invites ----
    op.create_table(
        'planet_invites',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('planet_id', sa.String(), sa.ForeignKey('planets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('planet_name', sa.String(), nullable=False),
        sa.Column('invited_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('inviting_user_email', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('planet_id', 'invited_user_id', name='uq_pending_invite'),
    )
    op.create_index('ix_planet_invites_planet_id', 'planet_invites', ['planet_id'])
    op.create_index('ix_planet_invites_invited_user_id', 'planet_invites', ['invited_user_id'])


def downgrade() -> None:
    op.drop_table('planet_invites')
    op.drop_table('planet_tasks')
    op.drop_table('planet_columns')
    op.drop_table('planet_collaborators')
    op.drop_table('planets')
    op.drop_table('revoked_tokens')
    op.drop_table('users')
    planet_role.drop(op.get_bind(), checkfirst=True)
    global_role.drop(op.get_bind(), checkfirst=True)
