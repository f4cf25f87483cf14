# workspace_access.py — Workspace membership checks
# Roles: admin (manage members, billing, settings), member (edit content),
# viewer (read only). Platform role is separate (auth.UserRole).
from typing import Optional

from fastapi import Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import WorkspaceMember, WorkspaceRole

EDITOR_ROLES = {WorkspaceRole.ADMIN, WorkspaceRole.MEMBER}


async def get_membership(workspace_id: str, user_id: str, db: AsyncSession) -> Optional[WorkspaceMember]:
    stmt = select(WorkspaceMember).where(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == user_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def role_of(membership: WorkspaceMember) -> WorkspaceRole:
    return WorkspaceRole(membership.role)


async def ensure_member(workspace_id: str, user: CurrentUser, db: AsyncSession) -> WorkspaceMember:
    if not workspace_id:
        raise HTTPException(status_code=400, detail="workspace_id is required")
    membership = await get_membership(workspace_id, user.id, db)
    if not membership:
        raise HTTPException(status_code=403, detail="You do not have access to this workspace")
    return membership


async def ensure_editor(workspace_id: str, user: CurrentUser, db: AsyncSession) -> WorkspaceMember:
    membership = await ensure_member(workspace_id, user, db)
    if role_of(membership) not in EDITOR_ROLES:
        raise HTTPException(status_code=403, detail="Viewers cannot modify workspace content")
    return membership


async def ensure_admin(workspace_id: str, user: CurrentUser, db: AsyncSession) -> WorkspaceMember:
    membership = await ensure_member(workspace_id, user, db)
    if role_of(membership) != WorkspaceRole.ADMIN:
        raise HTTPException(status_code=403, detail="Only workspace admins can perform this action")
    return membership


# ============================================================
# FASTAPI DEPENDENCIES (workspace_id from the query string)
# ============================================================

async def require_workspace_member(
    workspace_id: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> WorkspaceMember:
    return await ensure_member(workspace_id, user, db)


async def require_workspace_admin(
    workspace_id: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> WorkspaceMember:
    return await ensure_admin(workspace_id, user, db)
