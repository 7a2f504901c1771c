"""menu item stripe price

Revision ID: b41f0e7d2a96
Revises: 7c2e9a41d5b3
Create Date: 2026-10-17 16:40:07.913254

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b41f0e7d2a96'
down_revision = '7c2e9a41d5b3'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('menu_items', schema=None) as batch_op:
        batch_op.add_column(sa.Column('stripe_price_id', sa.String(length=255), nullable=True))


def downgrade():
    with op.batch_alter_table('menu_items', schema=None) as batch_op:
        batch_op.drop_column('stripe_price_id')
