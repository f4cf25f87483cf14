# routers/admin.py — Platform statistics (platform admins only)
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_platform_admin, CurrentUser
from database import get_db_session
from models import Subscription, SubscriptionStatus, Task, TaskStatus, User, Workspace, utcnow

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


async def _count(db: AsyncSession, column, *conditions) -> int:
    stmt = select(func.count(column))
    if conditions:
        stmt = stmt.where(*conditions)
    return (await db.execute(stmt)).scalar() or 0


@router.get("/stats")
async def get_platform_stats(
    user: CurrentUser = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db_session),
):
    now = utcnow()
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)
    live_user = User.deleted_at.is_(None)

    return {
        "users": {
            "total": await _count(db, User.id, live_user),
            "new_30d": await _count(db, User.id, live_user, User.created_at >= month_ago),
            "new_7d": await _count(db, User.id, live_user, User.created_at >= week_ago),
            "verified": await _count(db, User.id, live_user, User.email_verified.is_(True)),
        },
        "workspaces": {
            "total": await _count(db, Workspace.id),
        },
        "tasks": {
            "total": await _count(db, Task.id),
            "completed": await _count(db, Task.id, Task.status == TaskStatus.COMPLETED),
            "new_7d": await _count(db, Task.id, Task.created_at >= week_ago),
        },
        "subscriptions": {
            "total": await _count(db, Subscription.id),
            "active": await _count(
                db, Subscription.id,
                Subscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING]),
            ),
            "pro": await _count(db, Subscription.id, Subscription.plan_id == "pro"),
        },
        "generated_at": now.isoformat(),
    }
