# plan_limits.py — Plan limit enforcement and billing guard
# Every check fails open: a broken lookup must never block a paying workspace.
import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Plan, Subscription, SubscriptionStatus, Task, Workspace,
    WorkspaceInvitation, WorkspaceMember, utcnow,
)

logger = logging.getLogger("todoria.plan_limits")

FREE_PLAN_LIMITS = {"plan_id": "free", "plan_name": "Free", "max_members": 3, "max_tasks": 50}
FREE_WORKSPACE_LIMIT = 1
PRO_WORKSPACE_LIMIT = 10
LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


async def get_subscription(workspace_id: str, db: AsyncSession) -> Optional[Subscription]:
    result = await db.execute(select(Subscription).where(Subscription.workspace_id == workspace_id))
    return result.scalar_one_or_none()


async def get_workspace_plan_limits(workspace_id: str, db: AsyncSession) -> dict:
    """Effective limits: the subscribed plan when active/trialing, otherwise free"""
    sub = await get_subscription(workspace_id, db)
    if not sub or SubscriptionStatus(sub.status) not in LIVE_STATUSES:
        return dict(FREE_PLAN_LIMITS)

    plan = await db.get(Plan, sub.plan_id)
    if not plan:
        return dict(FREE_PLAN_LIMITS)
    return {
        "plan_id": plan.id,
        "plan_name": plan.name,
        "max_members": plan.max_members,
        "max_tasks": plan.max_tasks,
    }


async def count_top_level_tasks(workspace_id: str, db: AsyncSession) -> int:
    stmt = select(func.count(Task.id)).where(
        Task.workspace_id == workspace_id,
        Task.parent_task_id.is_(None),
    )
    return (await db.execute(stmt)).scalar() or 0


async def count_members(workspace_id: str, db: AsyncSession) -> int:
    stmt = select(func.count(WorkspaceMember.id)).where(WorkspaceMember.workspace_id == workspace_id)
    return (await db.execute(stmt)).scalar() or 0


async def count_pending_invitations(workspace_id: str, db: AsyncSession) -> int:
    stmt = select(func.count(WorkspaceInvitation.id)).where(
        WorkspaceInvitation.workspace_id == workspace_id,
        WorkspaceInvitation.accepted_at.is_(None),
        WorkspaceInvitation.expires_at > utcnow(),
    )
    return (await db.execute(stmt)).scalar() or 0


def _plan_label(limits: dict) -> str:
    return "Free" if limits["plan_id"] == "free" else limits["plan_name"]


async def check_task_limit(workspace_id: str, db: AsyncSession) -> None:
    """Raise 403 PLAN_LIMIT_TASKS when the workspace cannot add another top-level task"""
    try:
        limits = await get_workspace_plan_limits(workspace_id, db)
        max_tasks = limits["max_tasks"]
        current = await count_top_level_tasks(workspace_id, db) if max_tasks is not None else 0
    except Exception as e:
        logger.error(f"Task limit check failed for workspace {workspace_id}: {e}")
        return

    if max_tasks is not None and current >= max_tasks:
        raise HTTPException(status_code=403, detail={
            "code": "PLAN_LIMIT_TASKS",
            "message": (
                f"Your workspace has reached the {max_tasks}-task limit on the "
                f"{_plan_label(limits)} plan. Upgrade to Pro for unlimited tasks."
            ),
            "limit": max_tasks,
            "current": current,
            "plan_id": limits["plan_id"],
        })


async def check_member_limit(workspace_id: str, db: AsyncSession) -> None:
    """Members plus pending invitations count against the seat limit"""
    try:
        limits = await get_workspace_plan_limits(workspace_id, db)
        max_members = limits["max_members"]
        current = 0
        if max_members is not None:
            current = await count_members(workspace_id, db) + await count_pending_invitations(workspace_id, db)
    except Exception as e:
        logger.error(f"Member limit check failed for workspace {workspace_id}: {e}")
        return

    if max_members is not None and current >= max_members:
        raise HTTPException(status_code=403, detail={
            "code": "PLAN_LIMIT_MEMBERS",
            "message": (
                f"Your workspace has reached the {max_members}-member limit on the "
                f"{_plan_label(limits)} plan. Upgrade to Pro for up to 50 members."
            ),
            "limit": max_members,
            "current": current,
            "plan_id": limits["plan_id"],
        })


async def check_workspace_limit(user_id: str, db: AsyncSession) -> None:
    """Free owners may own one workspace; owners with any live Pro workspace up to ten"""
    try:
        owned = (await db.execute(
            select(func.count(Workspace.id)).where(Workspace.owner_id == user_id)
        )).scalar() or 0
        pro_stmt = (
            select(Subscription.id)
            .join(Workspace, Workspace.id == Subscription.workspace_id)
            .where(
                Workspace.owner_id == user_id,
                Subscription.plan_id == "pro",
                Subscription.status.in_(LIVE_STATUSES),
            )
            .limit(1)
        )
        has_pro = (await db.execute(pro_stmt)).first() is not None
    except Exception as e:
        logger.error(f"Workspace limit check failed for user {user_id}: {e}")
        return

    limit = PRO_WORKSPACE_LIMIT if has_pro else FREE_WORKSPACE_LIMIT
    if owned >= limit:
        message = (
            "Pro plan allows up to 10 workspaces."
            if has_pro else
            "Free plan allows 1 workspace. Upgrade to Pro for up to 10 workspaces."
        )
        raise HTTPException(status_code=403, detail={
            "code": "PLAN_LIMIT_WORKSPACES",
            "message": message,
            "limit": limit,
            "current": owned,
            "plan_id": "pro" if has_pro else "free",
        })


async def require_active_subscription(workspace_id: str, db: AsyncSession) -> None:
    """Billing guard for mutations. No subscription means an active free workspace."""
    try:
        sub = await get_subscription(workspace_id, db)
        status = SubscriptionStatus(sub.status) if sub else None
    except Exception as e:
        logger.error(f"Billing guard lookup failed for workspace {workspace_id}: {e}")
        return

    if status == SubscriptionStatus.CANCELED:
        raise HTTPException(status_code=402, detail={
            "code": "SUBSCRIPTION_CANCELED",
            "message": "Your subscription has been canceled. Please resubscribe to continue using this workspace.",
        })
    if status == SubscriptionStatus.PAST_DUE:
        raise HTTPException(status_code=402, detail={
            "code": "PAYMENT_PAST_DUE",
            "message": "Your payment is past due. Please update your payment method to continue.",
        })
