"""Single owner per planet

Revision ID: c4e8a2b6d0f1
Revises: a1f3c5e7d9b2
Create Date: 2026-10-19 12:00:00.000000

Adds a partial unique index so a planet can hold at most one OWNER link.
"""
from alembic import op
import sqlalchemy as sa

revision = 'c4e8a2b6d0f1'
down_revision = 'a1f3c5e7d9b2'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        'uq_planet_single_owner',
        'planet_collaborators',
        ['planet_id'],
        unique=True,
        postgresql_where=sa.text("role = 'OWNER'"),
        sqlite_where=sa.text("role = 'OWNER'"),
    )


def downgrade() -> None:
    op.drop_index('uq_planet_single_owner', table_name='planet_collaborators')
