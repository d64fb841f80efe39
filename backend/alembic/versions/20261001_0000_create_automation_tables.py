"""create_automation_tables

Revision ID: create_automation_tables
Revises:
Create Date: 2026-10-01 00:00:00.000000+00:00

"""
from alembic import op
import sqlalchemy as sa
from autojob.database_types import GUID, JSON, UTCDateTime


revision = 'create_automation_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'automation_jobs',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('schedule', JSON(), nullable=False),
        sa.Column('search_settings', JSON(), nullable=False),
        sa.Column('total_runs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('vacancies_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('applications_sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_match_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('evaluated_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_requests', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_run', UTCDateTime(), nullable=True),
        sa.Column('next_run', UTCDateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_automation_jobs_user_id'), 'automation_jobs', ['user_id'], unique=True)

    op.create_table(
        'user_credentials',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', UTCDateTime(), nullable=False),
        sa.Column('token_type', sa.String(20), nullable=False, server_default='bearer'),
        sa.Column('scope', sa.String(), nullable=True),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_user_credentials_user_id'), 'user_credentials', ['user_id'], unique=True)

    op.create_table(
        'applications',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('vacancy_id', sa.String(), nullable=False),
        sa.Column('vacancy_title', sa.String(), nullable=True),
        sa.Column('company_name', sa.String(), nullable=True),
        sa.Column('vacancy_url', sa.String(), nullable=True),
        sa.Column('resume_id', sa.String(), nullable=False),
        sa.Column('cover_letter', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('match_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('automated', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('source', sa.String(), nullable=False, server_default='hh.ru'),
        sa.Column('external_application_id', sa.String(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('applied_at', UTCDateTime(), nullable=False),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_applications_user_applied', 'applications', ['user_id', 'applied_at'], unique=False)

    op.create_table(
        'processed_vacancies',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('vacancy_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'vacancy_id', name='uq_processed_user_vacancy'),
    )

    op.create_table(
        'notifications',
        sa.Column('id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_notifications_user_id'), table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('processed_vacancies')
    op.drop_index('idx_applications_user_applied', table_name='applications')
    op.drop_table('applications')
    op.drop_index(op.f('ix_user_credentials_user_id'), table_name='user_credentials')
    op.drop_table('user_credentials')
    op.drop_index(op.f('ix_automation_jobs_user_id'), table_name='automation_jobs')
    op.drop_table('automation_jobs')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
