"""Optimistic locking version on gift cards

Revision ID: 0003_gift_card_version
Revises: 0002_tag_legacy_digests
Create Date: 2026-10-16

Balance updates check the version they read, so a redemption racing another
writer on a backend without row locks retries instead of losing an update.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0003_gift_card_version'
down_revision = '0002_tag_legacy_digests'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('gift_cards', schema=None) as batch_op:
        batch_op.add_column(sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'))


def downgrade():
    with op.batch_alter_table('gift_cards', schema=None) as batch_op:
        batch_op.drop_column('version_id')
