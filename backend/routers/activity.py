# routers/activity.py — Workspace activity feed
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database import get_db_session
from models import ActivityLog, WorkspaceMember
from workspace_access import require_workspace_member

router = APIRouter(prefix="/api/v1/activity", tags=["Activity"])


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


@router.get("")
async def list_activity(
    entity_type: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    membership: WorkspaceMember = Depends(require_workspace_member),
    db: AsyncSession = Depends(get_db_session),
):
    """Most recent activity first"""
    workspace_id = membership.workspace_id
    stmt = (
        select(ActivityLog)
        .where(ActivityLog.workspace_id == workspace_id)
        .options(selectinload(ActivityLog.user))
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )
    if entity_type:
        stmt = stmt.where(ActivityLog.entity_type == entity_type)

    entries = (await db.execute(stmt)).scalars().all()
    return {
        "activity": [
            {
                "id": a.id,
                "action": a.action,
                "entity_type": a.entity_type,
                "entity_id": a.entity_id,
                "user_id": a.user_id,
                "user_name": a.user.name if a.user else None,
                "details": a.extra_data or {},
                "created_at": _ts(a.created_at),
            }
            for a in entries
        ],
        "count": len(entries),
    }
