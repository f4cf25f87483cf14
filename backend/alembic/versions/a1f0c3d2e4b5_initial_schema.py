"""Initial schema: users, workspaces, boards, billing, email queue

Revision ID: a1f0c3d2e4b5
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates 16 tables:
- users, revoked_tokens (Accounts + JWT revocation)
- workspaces, workspace_members, workspace_invitations (Tenancy)
- categories, tasks, task_assignments, comments (Boards)
- activity_log, audit_logs (Activity feed + audit trail)
- plans, subscriptions, invoices (Stripe billing)
- email_queue, reminder_log (Cron jobs)
"""
from alembic import op
import sqlalchemy as sa

revision = 'a1f0c3d2e4b5'
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy persists Enum member names
user_role = sa.Enum('ADMIN', 'MEMBER', name='userrole')
workspace_role = sa.Enum('ADMIN', 'MEMBER', 'VIEWER', name='workspacerole')
digest_mode = sa.Enum('IMMEDIATE', 'DAILY_DIGEST', name='digestmode')
task_priority = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='taskpriority')
task_status = sa.Enum('TODO', 'IN_PROGRESS', 'COMPLETED', name='taskstatus')
subscription_status = sa.Enum('ACTIVE', 'PAST_DUE', 'CANCELED', 'TRIALING', name='subscriptionstatus')
invoice_status = sa.Enum('PAID', 'OPEN', 'FAILED', name='invoicestatus')
email_status = sa.Enum('PENDING', 'SENT', 'FAILED', name='emailstatus')


def upgrade() -> None:
    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('avatar_url', sa.String(), nullable=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('language', sa.String(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=False),
        sa.Column('email_notifications_enabled', sa.Boolean(), nullable=False),
        sa.Column('email_digest_mode', digest_mode, nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False),
        sa.Column('verification_token_hash', sa.String(), nullable=True),
        sa.Column('verification_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reset_token_hash', sa.String(), nullable=True),
        sa.Column('reset_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tos_accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_verification_token_hash', 'users', ['verification_token_hash'])
    op.create_index('ix_users_reset_token_hash', 'users', ['reset_token_hash'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])
    op.create_index('idx_user_deleted', 'users', ['deleted_at'], postgresql_where=sa.text('deleted_at IS NULL'))

    # ---- revoked_tokens ----
    op.create_table(
        'revoked_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('jti', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True)),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_revoked_tokens_jti', 'revoked_tokens', ['jti'], unique=True)

    # ---- workspaces ----
    op.create_table(
        'workspaces',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workspaces_owner_id', 'workspaces', ['owner_id'])

    # ---- workspace_members ----
    op.create_table(
        'workspace_members',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', workspace_role, nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_member'),
    )
    op.create_index('ix_workspace_members_workspace_id', 'workspace_members', ['workspace_id'])
    op.create_index('ix_workspace_members_user_id', 'workspace_members', ['user_id'])

    # ---- workspace_invitations ----
    op.create_table(
        'workspace_invitations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', workspace_role, nullable=False),
        sa.Column('token', sa.String(), nullable=False),
        sa.Column('invited_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workspace_invitations_workspace_id', 'workspace_invitations', ['workspace_id'])
    op.create_index('ix_workspace_invitations_email', 'workspace_invitations', ['email'])
    op.create_index('ix_workspace_invitations_token', 'workspace_invitations', ['token'], unique=True)
    op.create_index('idx_invite_workspace_email', 'workspace_invitations', ['workspace_id', 'email'])

    # ---- categories ----
    op.create_table(
        'categories',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('color', sa.String(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_categories_workspace_id', 'categories', ['workspace_id'])
    op.create_index('idx_category_workspace_pos', 'categories', ['workspace_id', 'position'])

    # ---- tasks ----
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category_id', sa.String(), sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('parent_task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', task_priority, nullable=False),
        sa.Column('status', task_status, nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_workspace_id', 'tasks', ['workspace_id'])
    op.create_index('ix_tasks_category_id', 'tasks', ['category_id'])
    op.create_index('ix_tasks_parent_task_id', 'tasks', ['parent_task_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_due_date', 'tasks', ['due_date'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])
    op.create_index('idx_task_workspace_cat_pos', 'tasks', ['workspace_id', 'category_id', 'position'])

    # ---- task_assignments ----
    op.create_table(
        'task_assignments',
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('task_id', 'user_id'),
    )
    op.create_index('ix_task_assignments_user_id', 'task_assignments', ['user_id'])

    # ---- comments ----
    op.create_table(
        'comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_comments_task_id', 'comments', ['task_id'])

    # ---- activity_log ----
    op.create_table(
        'activity_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('extra_data', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activity_log_workspace_id', 'activity_log', ['workspace_id'])
    op.create_index('ix_activity_log_user_id', 'activity_log', ['user_id'])
    op.create_index('ix_activity_log_created_at', 'activity_log', ['created_at'])

    # ---- audit_logs ----
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_request_id', 'audit_logs', ['request_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('idx_audit_workspace', 'audit_logs', ['workspace_id', 'created_at'])
    op.create_index('idx_audit_user', 'audit_logs', ['user_id', 'created_at'])

    # ---- plans ----
    op.create_table(
        'plans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('price_per_seat_cents', sa.Integer(), nullable=False),
        sa.Column('max_members', sa.Integer(), nullable=True),
        sa.Column('max_tasks', sa.Integer(), nullable=True),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    plans = sa.table(
        'plans',
        sa.column('id', sa.String()), sa.column('name', sa.String()),
        sa.column('price_per_seat_cents', sa.Integer()), sa.column('max_members', sa.Integer()),
        sa.column('max_tasks', sa.Integer()), sa.column('features', sa.JSON()),
        sa.column('is_active', sa.Boolean()),
    )
    op.bulk_insert(plans, [
        {'id': 'free', 'name': 'Free', 'price_per_seat_cents': 0, 'max_members': 3, 'max_tasks': 50,
         'features': {'email_reminders': False}, 'is_active': True},
        {'id': 'pro', 'name': 'Pro', 'price_per_seat_cents': 300, 'max_members': 50, 'max_tasks': None,
         'features': {'email_reminders': True}, 'is_active': True},
    ])

    # ---- subscriptions ----
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan_id', sa.String(), sa.ForeignKey('plans.id'), nullable=False),
        sa.Column('status', subscription_status, nullable=False),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(), nullable=True),
        sa.Column('seat_count', sa.Integer(), nullable=False),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workspace_id'),
        sa.UniqueConstraint('stripe_subscription_id'),
    )
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_stripe_customer_id', 'subscriptions', ['stripe_customer_id'])

    # ---- invoices ----
    op.create_table(
        'invoices',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subscription_id', sa.String(), sa.ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('stripe_invoice_id', sa.String(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('status', invoice_status, nullable=False),
        sa.Column('invoice_url', sa.String(), nullable=True),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_invoice_id'),
    )
    op.create_index('ix_invoices_workspace_id', 'invoices', ['workspace_id'])

    # ---- email_queue ----
    op.create_table(
        'email_queue',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('to_email', sa.String(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('template', sa.String(), nullable=False),
        sa.Column('template_data', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('status', email_status, nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_attempted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_email_queue_status_created', 'email_queue', ['status', 'created_at'])

    # ---- reminder_log ----
    op.create_table(
        'reminder_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reminded_on', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('task_id', 'user_id', 'reminded_on', name='uq_reminder_per_task_user_day'),
    )


def downgrade() -> None:
    op.drop_table('reminder_log')
    op.drop_table('email_queue')
    op.drop_table('invoices')
    op.drop_table('subscriptions')
    op.drop_table('plans')
    op.drop_table('audit_logs')
    op.drop_table('activity_log')
    op.drop_table('comments')
    op.drop_table('task_assignments')
    op.drop_table('tasks')
    op.drop_table('categories')
    op.drop_table('workspace_invitations')
    op.drop_table('workspace_members')
    op.drop_table('workspaces')
    op.drop_table('revoked_tokens')
    op.drop_table('users')
    for enum_type in (email_status, invoice_status, subscription_status, task_status,
                      task_priority, digest_mode, workspace_role, user_role):
        enum_type.drop(op.get_bind(), checkfirst=True)
