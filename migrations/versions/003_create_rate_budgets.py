"""create rate_budgets table

Daily call ledger for external APIs: one row per (api_name,
credential_id, usage_date). The shared application key is recorded under
credential_id = 'default' instead of NULL so the unique constraint also
holds for it on PostgreSQL. Day rollover needs no job: the first call of a
new UTC day inserts a fresh row.

Revision ID: 003
Revises: 002
Create Date: 2026-10-18 00:02:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'rate_budgets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('api_name', sa.String(length=50), nullable=False),
        sa.Column('credential_id', sa.String(length=36), nullable=False, server_default='default'),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('calls_made', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calls_limit', sa.Integer(), nullable=True),
        sa.Column('last_call_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'api_name', 'credential_id', 'usage_date', name='uq_rate_budgets_key_day'
        ),
    )


def downgrade() -> None:
    op.drop_table('rate_budgets')
