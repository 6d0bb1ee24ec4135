"""add_last_invoice_id

Revision ID: b41d6e2f9a07
Revises: 7c3e9a1d52f4
Create Date: 2026-10-18 15:40:02.118734

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b41d6e2f9a07'
down_revision: Union[str, None] = '7c3e9a1d52f4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Record the last renewal invoice applied to each ledger entry."""
    from sqlalchemy import inspect

    bind = op.get_bind()
    inspector = inspect(bind)
    columns = [col['name'] for col in inspector.get_columns('user_subscriptions')]

    if 'last_invoice_id' not in columns:
        with op.batch_alter_table('user_subscriptions') as batch_op:
            batch_op.add_column(sa.Column('last_invoice_id', sa.String(length=255), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table('user_subscriptions') as batch_op:
        batch_op.drop_column('last_invoice_id')
