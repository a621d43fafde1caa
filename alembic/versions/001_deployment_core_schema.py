"""Deployment core schema - users and projects

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- users: account rows (only the columns the deployment core reads)
- projects: deployable sites, one provider each

(owner_id, name) is unique. github_repo is indexed but NOT unique: several
owners may deploy the same repository.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create ENUMs (with idempotent handling - skip if already exists)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE deployment_provider AS ENUM ('cloudflare', 'netlify');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE project_status AS ENUM ('deploying', 'deployed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Table: users
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('username', sa.String(64), nullable=False, unique=True),
        sa.Column('github_access_token', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Table: projects
    op.create_table(
        'projects',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('github_repo', sa.String(201), nullable=False, index=True),
        sa.Column('deployment_provider', postgresql.ENUM('cloudflare', 'netlify', name='deployment_provider', create_type=False), nullable=False),
        sa.Column('deployment_id', sa.String(128), nullable=False),
        sa.Column('deployment_url', sa.String(512), nullable=True),
        sa.Column('status', postgresql.ENUM('deploying', 'deployed', 'failed', name='project_status', create_type=False), nullable=False, server_default='deploying', index=True),
        sa.Column('webhook_secret', sa.String(128), nullable=False),
        sa.Column('default_branch', sa.String(50), nullable=False, server_default='main'),
        sa.Column('last_deployment_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('owner_id', 'name', name='uq_projects_owner_name'),
        sa.CheckConstraint("github_repo ~ '^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$'", name='ck_projects_github_repo'),
        sa.CheckConstraint("char_length(name) >= 3", name='ck_projects_name_length'),
    )


def downgrade() -> None:
    op.drop_table('projects')
    op.drop_table('users')

    op.execute('DROP TYPE IF EXISTS project_status')
    op.execute('DROP TYPE IF EXISTS deployment_provider')
