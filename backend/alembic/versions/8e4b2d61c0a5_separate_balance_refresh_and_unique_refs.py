"""separate balance refresh and unique external refs

Revision ID: 8e4b2d61c0a5
Revises: 3c1f0a9d2b7e
Create Date: 2026-10-18 16:40:27.503114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8e4b2d61c0a5'
down_revision: Union[str, Sequence[str], None] = '3c1f0a9d2b7e'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    from sqlalchemy import inspect as sa_inspect
    conn = op.get_bind()
    existing = [c['name'] for c in sa_inspect(conn).get_columns('connected_accounts')]

    if 'balance_updated_at' not in existing:
        op.add_column('connected_accounts', sa.Column('balance_updated_at', sa.DateTime(), nullable=True))

    # Existing duplicate references must be cleaned up before this runs.
    op.drop_index('ix_transactions_user_external_ref', table_name='transactions')
    op.create_index('ix_transactions_user_external_ref', 'transactions', ['user_id', 'external_reference'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_transactions_user_external_ref', table_name='transactions')
    op.create_index('ix_transactions_user_external_ref', 'transactions', ['user_id', 'external_reference'], unique=False)

    from sqlalchemy import inspect as sa_inspect
    conn = op.get_bind()
    existing = [c['name'] for c in sa_inspect(conn).get_columns('connected_accounts')]
    if 'balance_updated_at' in existing:
        with op.batch_alter_table('connected_accounts') as batch_op:
            batch_op.drop_column('balance_updated_at')
