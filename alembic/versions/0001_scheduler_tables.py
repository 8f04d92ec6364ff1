"""scheduler_tables

Revision ID: 0001_scheduler_tables
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_scheduler_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('jobs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('job_type', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('customer_id', sa.String(64), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('priority', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_jobs_customer_id', 'jobs', ['customer_id'])
    op.create_index('ix_jobs_customer_status', 'jobs', ['customer_id', 'status'])
    op.create_index('ix_jobs_customer_created', 'jobs', ['customer_id', 'created_at'])

    op.create_table('tenant_limits',
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('max_concurrent_jobs', sa.Integer(), nullable=True),
        sa.Column('max_jobs_per_minute', sa.Integer(), nullable=True),
        sa.Column('max_jobs_per_hour', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('customer_id')
    )

    op.create_table('batches',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('batch_name', sa.String(128), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('total_documents', sa.Integer(), nullable=False),
        sa.Column('processed_documents', sa.Integer(), nullable=False),
        sa.Column('validated_documents', sa.Integer(), nullable=False),
        sa.Column('error_count', sa.Integer(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('export_started_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_batches_status', 'batches', ['status'])

    op.create_table('documents',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('batch_id', sa.String(36), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_type', sa.String(32), nullable=False),
        sa.Column('confidence_score', sa.Float(), nullable=True),
        sa.Column('extracted_metadata', sa.JSON(), nullable=True),
        sa.Column('processing_priority', sa.Integer(), nullable=False),
        sa.Column('validation_status', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_documents_batch_priority', 'documents', ['batch_id', 'processing_priority'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_documents_batch_priority', 'documents')
    op.drop_table('documents')
    op.drop_index('ix_batches_status', 'batches')
    op.drop_table('batches')
    op.drop_table('tenant_limits')
    op.drop_index('ix_jobs_customer_created', 'jobs')
    op.drop_index('ix_jobs_customer_status', 'jobs')
    op.drop_index('ix_jobs_customer_id', 'jobs')
    op.drop_table('jobs')
