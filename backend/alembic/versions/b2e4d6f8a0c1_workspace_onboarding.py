"""Workspace onboarding: per-member welcome flow progress

Revision ID: b2e4d6f8a0c1
Revises: a1f0c3d2e4b5
Create Date: 2026-10-18 12:00:00.000000

Adds 1 table and 1 column:
- workspace_onboarding_progress (Current step, completed steps, skip/complete stamps)
- workspace_members.onboarding_completed_at (Stops re-prompting after complete or skip)
"""
from alembic import op
import sqlalchemy as sa

revision = 'b2e4d6f8a0c1'
down_revision = 'a1f0c3d2e4b5'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        'workspace_members',
        sa.Column('onboarding_completed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # ---- workspace_onboarding_progress ----
    op.create_table(
        'workspace_onboarding_progress',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('current_step', sa.Integer(), nullable=False),
        sa.Column('steps_completed', sa.JSON(), nullable=False),
        sa.Column('profile_updated', sa.Boolean(), nullable=False),
        sa.Column('skipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workspace_id', 'user_id', name='uq_onboarding_member'),
    )
    op.create_index('ix_workspace_onboarding_progress_workspace_id', 'workspace_onboarding_progress',
                    ['workspace_id'])
    op.create_index('ix_workspace_onboarding_progress_user_id', 'workspace_onboarding_progress', ['user_id'])


def downgrade() -> None:
    op.drop_table('workspace_onboarding_progress')
    op.drop_column('workspace_members', 'onboarding_completed_at')
