"""create search_profiles and api_credentials tables

search_profiles holds the user-defined search configuration plus the
columns the background scanner drives (scan_status, scan_batch_id,
scan_progress, last_synced_at). api_credentials holds owner-supplied keys
for the external search API, stored encrypted.

See also: src/entities/search_profile.py, src/entities/api_credential.py

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'search_profiles',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('industries', sa.JSON(), nullable=False),
        sa.Column('roles', sa.JSON(), nullable=False),
        sa.Column('locations', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('scan_status', sa.String(length=20), nullable=False, server_default='idle'),
        sa.Column('scan_batch_id', sa.String(length=36), nullable=True),
        sa.Column('scan_progress', sa.JSON(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_search_profiles_owner_id'), 'search_profiles', ['owner_id'])
    op.create_index(op.f('ix_search_profiles_scan_status'), 'search_profiles', ['scan_status'])

    op.create_table(
        'api_credentials',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=36), nullable=False),
        sa.Column('api_name', sa.String(length=50), nullable=False, server_default='reed'),
        sa.Column('encrypted_key', sa.Text(), nullable=False),
        sa.Column('label', sa.String(length=100), nullable=True),
        sa.Column('daily_limit', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_unlimited', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_api_credentials_owner', 'api_credentials', ['owner_id', 'api_name', 'is_active']
    )


def downgrade() -> None:
    op.drop_index('ix_api_credentials_owner', table_name='api_credentials')
    op.drop_table('api_credentials')
    op.drop_index(op.f('ix_search_profiles_scan_status'), table_name='search_profiles')
    op.drop_index(op.f('ix_search_profiles_owner_id'), table_name='search_profiles')
    op.drop_table('search_profiles')
