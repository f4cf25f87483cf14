# models.py — Database models for Todoria
# - UUID primary keys everywhere
# - Workspaces are the tenant boundary (members, invitations, categories, tasks)
# - Soft deletes for user accounts (GDPR erasure keeps referential integrity)
# - Billing tables mirror Stripe subscription/invoice state
# - Email queue + reminder log for the cron jobs

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Date, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    MEMBER = "member"


class WorkspaceRole(str, PyEnum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class DigestMode(str, PyEnum):
    IMMEDIATE = "immediate"
    DAILY_DIGEST = "daily_digest"


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SubscriptionStatus(str, PyEnum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"


class InvoiceStatus(str, PyEnum):
    PAID = "paid"
    OPEN = "open"
    FAILED = "failed"


class EmailStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.MEMBER, nullable=False, index=True)

    # Preferences
    language = Column(String, nullable=False, default="en")
    timezone = Column(String, nullable=False, default="UTC")
    email_notifications_enabled = Column(Boolean, nullable=False, default=True)
    email_digest_mode = Column(SQLEnum(DigestMode), nullable=False, default=DigestMode.IMMEDIATE)

    # Verification / recovery (sha256 of the emailed token, never the token itself)
    email_verified = Column(Boolean, nullable=False, default=False)
    verification_token_hash = Column(String, nullable=True, index=True)
    verification_expires_at = Column(DateTime(timezone=True), nullable=True)
    reset_token_hash = Column(String, nullable=True, index=True)
    reset_expires_at = Column(DateTime(timezone=True), nullable=True)

    tos_accepted_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    memberships = relationship("WorkspaceMember", back_populates="user")

    __table_args__ = (
        Index("idx_user_deleted", "deleted_at", postgresql_where=Column("deleted_at").is_(None)),
    )


# ============================================================
# TOKEN REVOCATION
# ============================================================

class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    jti = Column(String, unique=True, nullable=False, index=True)  # JWT ID
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


# ============================================================
# WORKSPACES
# ============================================================

class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("WorkspaceMember", back_populates="workspace")
    invitations = relationship("WorkspaceInvitation", back_populates="workspace")
    categories = relationship("Category", back_populates="workspace")
    subscription = relationship("Subscription", back_populates="workspace", uselist=False)


class WorkspaceMember(Base):
    __tablename__ = "workspace_members"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(WorkspaceRole), nullable=False, default=WorkspaceRole.MEMBER)
    joined_at = Column(DateTime(timezone=True), default=utcnow)
    onboarding_completed_at = Column(DateTime(timezone=True), nullable=True)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
    )


class WorkspaceInvitation(Base):
    __tablename__ = "workspace_invitations"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, nullable=False, index=True)
    role = Column(SQLEnum(WorkspaceRole), nullable=False, default=WorkspaceRole.MEMBER)
    token = Column(String, unique=True, nullable=False, index=True)
    invited_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    workspace = relationship("Workspace", back_populates="invitations")
    inviter = relationship("User", foreign_keys=[invited_by])

    __table_args__ = (
        Index("idx_invite_workspace_email", "workspace_id", "email"),
    )


class OnboardingProgress(Base):
    """Where a member is in the workspace welcome flow"""
    __tablename__ = "workspace_onboarding_progress"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    current_step = Column(Integer, nullable=False, default=1)
    steps_completed = Column(JSON, nullable=False, default=list)
    profile_updated = Column(Boolean, nullable=False, default=False)
    skipped_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_onboarding_member"),
    )


# ============================================================
# CATEGORIES & TASKS
# ============================================================

class Category(Base):
    """Named, coloured grouping of tasks (a board column)"""
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#3B82F6")
    position = Column(Integer, nullable=False, default=0)
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    workspace = relationship("Workspace", back_populates="categories")
    tasks = relationship("Task", back_populates="category", order_by="Task.position")

    __table_args__ = (
        Index("idx_category_workspace_pos", "workspace_id", "position"),
    )


class Task(Base):
    """Work item; subtasks point at their parent through parent_task_id"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(SQLEnum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.TODO, index=True)
    due_date = Column(Date, nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    position = Column(Integer, nullable=False, default=0)  # Order within category

    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    category = relationship("Category", back_populates="tasks")
    creator = relationship("User", foreign_keys=[created_by])
    assignments = relationship("TaskAssignment", back_populates="task")
    comments = relationship("Comment", back_populates="task", order_by="Comment.created_at")

    __table_args__ = (
        Index("idx_task_workspace_cat_pos", "workspace_id", "category_id", "position"),
    )


class TaskAssignment(Base):
    __tablename__ = "task_assignments"

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="assignments")
    user = relationship("User")


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="comments")
    author = relationship("User")


# ============================================================
# ACTIVITY & AUDIT
# ============================================================

class ActivityLog(Base):
    """Workspace activity feed entry"""
    __tablename__ = "activity_log"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String, nullable=False)  # created, updated, moved, deleted, commented, ...
    entity_type = Column(String, nullable=False)  # task, category, comment, member
    entity_id = Column(String, nullable=True)
    extra_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User")


class AuditLog(Base):
    """Security-relevant events. Retention anonymises rows after two years."""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String, nullable=False)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_audit_workspace", "workspace_id", "created_at"),
        Index("idx_audit_user", "user_id", "created_at"),
    )


# ============================================================
# BILLING
# ============================================================

class Plan(Base):
    __tablename__ = "plans"

    id = Column(String, primary_key=True)  # "free", "pro"
    name = Column(String, nullable=False)
    price_per_seat_cents = Column(Integer, nullable=False, default=0)
    max_members = Column(Integer, nullable=True)  # None = unlimited
    max_tasks = Column(Integer, nullable=True)
    features = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, unique=True)
    plan_id = Column(String, ForeignKey("plans.id"), nullable=False, default="free")
    status = Column(SQLEnum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, unique=True)
    seat_count = Column(Integer, nullable=False, default=1)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    workspace = relationship("Workspace", back_populates="subscription")
    plan = relationship("Plan")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(String, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)
    stripe_invoice_id = Column(String, unique=True, nullable=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String, nullable=False, default="usd")
    status = Column(SQLEnum(InvoiceStatus), nullable=False, default=InvoiceStatus.OPEN)
    invoice_url = Column(String, nullable=True)
    period_start = Column(DateTime(timezone=True), nullable=True)
    period_end = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============================================================
# EMAIL QUEUE & REMINDERS
# ============================================================

class EmailQueue(Base):
    __tablename__ = "email_queue"

    id = Column(String, primary_key=True, default=new_uuid)
    to_email = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    template = Column(String, nullable=False)
    template_data = Column(JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    status = Column(SQLEnum(EmailStatus), nullable=False, default=EmailStatus.PENDING)
    last_error = Column(Text, nullable=True)
    last_attempted_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_email_queue_status_created", "status", "created_at"),
    )


class ReminderLog(Base):
    __tablename__ = "reminder_log"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reminded_on = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("task_id", "user_id", "reminded_on", name="uq_reminder_per_task_user_day"),
    )
