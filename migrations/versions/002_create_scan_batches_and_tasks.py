"""create scan_batches and scan_tasks tables

scan_batches is an append-only record of every expansion run.
scan_tasks is the durable work queue drained by ScanExecutorService.
Rows are never deleted so the table is also an audit trail.

Index strategy:
  - (status, scheduled_for): the claim query filters on both.
  - (profile_id, batch_id): finalise and batch stats are scoped to a batch.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 00:01:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'scan_batches',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('profile_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('progress', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['profile_id'], ['search_profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_batches_profile_id'), 'scan_batches', ['profile_id'])

    op.create_table(
        'scan_tasks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('profile_id', sa.String(length=36), nullable=False),
        sa.Column('batch_id', sa.String(length=36), nullable=False),
        sa.Column('task_type', sa.String(length=30), nullable=False),
        sa.Column('keywords', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('jobs_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['profile_id'], ['search_profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "task_type IN ('role_variation', 'expanded_location', 'industry_search')",
            name='ck_scan_tasks_task_type',
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'skipped')",
            name='ck_scan_tasks_status',
        ),
        sa.CheckConstraint('attempts <= max_attempts', name='ck_scan_tasks_attempts'),
    )
    op.create_index('ix_scan_tasks_claim', 'scan_tasks', ['status', 'scheduled_for'])
    op.create_index('ix_scan_tasks_profile_batch', 'scan_tasks', ['profile_id', 'batch_id'])
    op.create_index(op.f('ix_scan_tasks_batch_id'), 'scan_tasks', ['batch_id'])


def downgrade() -> None:
    op.drop_index(op.f('ix_scan_tasks_batch_id'), table_name='scan_tasks')
    op.drop_index('ix_scan_tasks_profile_batch', table_name='scan_tasks')
    op.drop_index('ix_scan_tasks_claim', table_name='scan_tasks')
    op.drop_table('scan_tasks')
    op.drop_index(op.f('ix_scan_batches_profile_id'), table_name='scan_batches')
    op.drop_table('scan_batches')
