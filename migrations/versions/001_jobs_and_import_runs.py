"""Jobs table and import run audit

Revision ID: 001_jobs_and_import_runs
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_jobs_and_import_runs'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the jobs table and the import run audit table."""

    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_slug', sa.Text(), nullable=False),
        sa.Column('internal_job_id', sa.Text(), nullable=False),
        sa.Column('job_id', sa.Text(), nullable=True),
        sa.Column('company_name', sa.Text(), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('location_text', sa.Text(), nullable=True),
        sa.Column('departments', postgresql.JSONB(), nullable=True),
        sa.Column('offices', postgresql.JSONB(), nullable=True),
        sa.Column('employment_type', sa.Text(), nullable=True),
        sa.Column('workplace_type', sa.Text(), nullable=True),
        sa.Column('remote_hint', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('shift', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('requisition_open_date', sa.DateTime(), nullable=True),
        sa.Column('job_category', sa.Text(), nullable=True),
        sa.Column('benefits', postgresql.JSONB(), nullable=True),
        sa.Column('travel_requirement', sa.Text(), nullable=True),
        sa.Column('years_experience', sa.Integer(), nullable=True),
        sa.Column('experience_range', sa.Text(), nullable=True),
        sa.Column('contractor_type', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('city', sa.Text(), nullable=True),
        sa.Column('state', sa.Text(), nullable=True),
        sa.Column('country', sa.Text(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('salary_currency', sa.Text(), nullable=True),
        sa.Column('salary_min', sa.Float(), nullable=True),
        sa.Column('salary_max', sa.Float(), nullable=True),
        sa.Column('content_text', sa.Text(), nullable=True),
        sa.Column('content_html', sa.Text(), nullable=True),
        sa.Column('extra', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.UniqueConstraint('company_slug', 'internal_job_id',
                            name='uq_jobs_identity'),
        sa.CheckConstraint('salary_min IS NULL OR salary_min >= 0',
                           name='jobs_salary_min_check'),
        sa.CheckConstraint('salary_max IS NULL OR salary_max >= 0',
                           name='jobs_salary_max_check'),
    )
    op.create_index('idx_jobs_company_slug', 'jobs', ['company_slug'])

    op.create_table(
        'import_run',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('feed_format', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('dry_run', sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column('insert_only', sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column('cancelled', sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column('read_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('written_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejected_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejected_sample', postgresql.JSONB(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("status IN ('done', 'aborted')",
                           name='import_run_status_check'),
    )
    op.create_index('idx_import_run_status', 'import_run', ['status'])
    op.create_index('idx_import_run_started_at', 'import_run', ['started_at'])


def downgrade() -> None:
    """Drop the import tables."""
    op.drop_index('idx_import_run_started_at', table_name='import_run')
    op.drop_index('idx_import_run_status', table_name='import_run')
    op.drop_table('import_run')
    op.drop_index('idx_jobs_company_slug', table_name='jobs')
    op.drop_table('jobs')
