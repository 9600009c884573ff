"""add sync_setting key/value table

Revision ID: 5c2e9a1f7b30
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9a1f7b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'sync_setting' in insp.get_table_names():
        return
    op.create_table(
        'sync_setting',
        sa.Column('key', sa.String(length=128), primary_key=True),
        sa.Column('value', sa.String(length=256), nullable=False),
    )


def downgrade():
    op.drop_table('sync_setting')
