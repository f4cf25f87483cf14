# routers/workspaces.py — Workspaces, members and invitations
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from activity import log_activity, record_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from email_service import client_url, queue_workspace_invite
from models import (
    Category, OnboardingProgress, Task, User, Workspace, WorkspaceMember, WorkspaceInvitation,
    WorkspaceRole, as_utc, utcnow,
)
from plan_limits import check_member_limit, check_workspace_limit
from workspace_access import ensure_admin, ensure_member, get_membership

logger = logging.getLogger("todoria.workspaces")

router = APIRouter(prefix="/api/v1/workspaces", tags=["Workspaces"])

INVITATION_EXPIRY_DAYS = 7
ONBOARDING_STEPS = ["welcome", "profile", "tour", "roles", "getting-started"]
TOTAL_ONBOARDING_STEPS = len(ONBOARDING_STEPS)


# --- Schemas ---

class WorkspaceOut(BaseModel):
    id: str
    name: str
    owner_id: str
    user_role: Optional[str] = None
    member_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class WorkspaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)


class MemberOut(BaseModel):
    id: str
    user_id: str
    email: str
    name: str
    avatar_url: Optional[str] = None
    role: str
    is_owner: bool = False
    joined_at: Optional[str] = None


class MemberRoleUpdate(BaseModel):
    role: WorkspaceRole


class InvitationCreate(BaseModel):
    email: EmailStr
    role: WorkspaceRole = WorkspaceRole.MEMBER


class InvitationOut(BaseModel):
    id: str
    workspace_id: str
    email: str
    role: str
    invited_by: Optional[str] = None
    expires_at: Optional[str] = None
    created_at: Optional[str] = None


class OnboardingStepUpdate(BaseModel):
    step: Optional[int] = None
    step_name: Optional[str] = None


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _role(value) -> str:
    return value.value if isinstance(value, WorkspaceRole) else str(value)


async def _member_count(workspace_id: str, db: AsyncSession) -> int:
    stmt = select(func.count(WorkspaceMember.id)).where(WorkspaceMember.workspace_id == workspace_id)
    return (await db.execute(stmt)).scalar() or 0


async def _get_workspace(workspace_id: str, db: AsyncSession) -> Workspace:
    workspace = await db.get(Workspace, workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


async def _workspace_out(workspace: Workspace, role, db: AsyncSession) -> WorkspaceOut:
    return WorkspaceOut(
        id=workspace.id,
        name=workspace.name,
        owner_id=workspace.owner_id,
        user_role=_role(role) if role is not None else None,
        member_count=await _member_count(workspace.id, db),
        created_at=_ts(workspace.created_at),
        updated_at=_ts(workspace.updated_at),
    )


def _invitation_out(inv: WorkspaceInvitation) -> InvitationOut:
    return InvitationOut(
        id=inv.id,
        workspace_id=inv.workspace_id,
        email=inv.email,
        role=_role(inv.role),
        invited_by=inv.invited_by,
        expires_at=_ts(inv.expires_at),
        created_at=_ts(inv.created_at),
    )


async def _pending_invitation_by_token(token: str, db: AsyncSession) -> WorkspaceInvitation:
    result = await db.execute(select(WorkspaceInvitation).where(WorkspaceInvitation.token == token))
    inv = result.scalar_one_or_none()
    if not inv or inv.accepted_at is not None or as_utc(inv.expires_at) < utcnow():
        raise HTTPException(status_code=400, detail="Invalid or expired invitation")
    return inv


# ============================================================
# PUBLIC INVITATION ENDPOINTS
# ============================================================

@router.get("/invitations/{token}")
async def get_invitation_info(token: str, db: AsyncSession = Depends(get_db_session)):
    """Invite landing page data; no authentication required"""
    inv = await _pending_invitation_by_token(token, db)
    workspace = await _get_workspace(inv.workspace_id, db)
    inviter = await db.get(User, inv.invited_by) if inv.invited_by else None
    return {
        "email": inv.email,
        "role": _role(inv.role),
        "workspace_id": workspace.id,
        "workspace_name": workspace.name,
        "inviter_name": inviter.name if inviter else None,
        "expires_at": _ts(inv.expires_at),
    }


@router.post("/invitations/{token}/accept", response_model=WorkspaceOut)
async def accept_invitation(
    token: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    inv = await _pending_invitation_by_token(token, db)

    if inv.email.lower() != user.email.lower():
        raise HTTPException(status_code=403, detail="This invitation was sent to a different email address")
    if await get_membership(inv.workspace_id, user.id, db):
        raise HTTPException(status_code=400, detail="You are already a member of this workspace")

    workspace = await _get_workspace(inv.workspace_id, db)
    membership = WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=inv.role)
    db.add(membership)
    inv.accepted_at = utcnow()

    await log_activity(db, workspace.id, user.id, "joined", "member", user.id,
                       {"role": _role(inv.role)})
    record_audit(db, "invitation.accepted", user_id=user.id, workspace_id=workspace.id,
                 resource_type="invitation", resource_id=inv.id, request=request)
    await db.commit()
    return await _workspace_out(workspace, inv.role, db)


# ============================================================
# WORKSPACE CRUD
# ============================================================

@router.get("", response_model=List[WorkspaceOut])
async def list_workspaces(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Workspaces the caller belongs to, with their role in each"""
    stmt = (
        select(Workspace, WorkspaceMember.role)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(WorkspaceMember.user_id == user.id)
        .order_by(Workspace.created_at.asc())
    )
    rows = (await db.execute(stmt)).all()
    return [await _workspace_out(ws, role, db) for ws, role in rows]


@router.get("/{workspace_id}", response_model=WorkspaceOut)
async def get_workspace(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _get_workspace(workspace_id, db)
    membership = await ensure_member(workspace_id, user, db)
    return await _workspace_out(workspace, membership.role, db)


@router.post("", response_model=WorkspaceOut, status_code=201)
async def create_workspace(
    data: WorkspaceCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a workspace; the creator becomes its owner and first admin"""
    await check_workspace_limit(user.id, db)

    workspace = Workspace(name=data.name.strip(), owner_id=user.id)
    db.add(workspace)
    await db.flush()

    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=WorkspaceRole.ADMIN))
    await log_activity(db, workspace.id, user.id, "created", "workspace", workspace.id,
                       {"name": workspace.name})
    record_audit(db, "workspace.created", user_id=user.id, workspace_id=workspace.id,
                 resource_type="workspace", resource_id=workspace.id, request=request)
    await db.commit()
    await db.refresh(workspace)
    return await _workspace_out(workspace, WorkspaceRole.ADMIN, db)


@router.patch("/{workspace_id}", response_model=WorkspaceOut)
async def update_workspace(
    workspace_id: str,
    data: WorkspaceUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _get_workspace(workspace_id, db)
    membership = await ensure_admin(workspace_id, user, db)

    if data.name is not None:
        workspace.name = data.name.strip()
        await log_activity(db, workspace_id, user.id, "updated", "workspace", workspace_id,
                           {"name": workspace.name})

    await db.commit()
    await db.refresh(workspace)
    return await _workspace_out(workspace, membership.role, db)


@router.delete("/{workspace_id}")
async def delete_workspace(
    workspace_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a workspace and everything in it (owner only)"""
    workspace = await _get_workspace(workspace_id, db)
    if workspace.owner_id != user.id:
        raise HTTPException(status_code=403, detail="Only the workspace owner can delete this workspace")

    record_audit(db, "workspace.deleted", user_id=user.id, resource_type="workspace",
                 resource_id=workspace_id, details={"name": workspace.name}, request=request)
    # Members, categories, tasks, subscription rows go with it (ON DELETE CASCADE)
    await db.execute(delete(Workspace).where(Workspace.id == workspace_id))
    await db.commit()
    logger.info(f"Workspace {workspace_id} deleted by {user.id}")
    return {"status": "deleted", "workspace_id": workspace_id}


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{workspace_id}/members", response_model=List[MemberOut])
async def list_members(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _get_workspace(workspace_id, db)
    await ensure_member(workspace_id, user, db)

    stmt = (
        select(WorkspaceMember, User)
        .join(User, User.id == WorkspaceMember.user_id)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.joined_at.asc())
    )
    rows = (await db.execute(stmt)).all()
    return [
        MemberOut(
            id=m.id,
            user_id=u.id,
            email=u.email,
            name=u.name or "",
            avatar_url=u.avatar_url,
            role=_role(m.role),
            is_owner=u.id == workspace.owner_id,
            joined_at=_ts(m.joined_at),
        )
        for m, u in rows
    ]


@router.patch("/{workspace_id}/members/{member_user_id}")
async def update_member_role(
    workspace_id: str,
    member_user_id: str,
    data: MemberRoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _get_workspace(workspace_id, db)
    await ensure_admin(workspace_id, user, db)

    target = await get_membership(workspace_id, member_user_id, db)
    if not target:
        raise HTTPException(status_code=404, detail="Member not found")
    if member_user_id == workspace.owner_id and data.role != WorkspaceRole.ADMIN:
        raise HTTPException(status_code=400, detail="The workspace owner must remain an admin")

    old_role = _role(target.role)
    target.role = data.role
    await log_activity(db, workspace_id, user.id, "role_changed", "member", member_user_id,
                       {"from": old_role, "to": data.role.value})
    await db.commit()
    return {"user_id": member_user_id, "role": data.role.value}


@router.delete("/{workspace_id}/members/{member_user_id}")
async def remove_member(
    workspace_id: str,
    member_user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Admins remove anyone but the owner; members may remove themselves (leave)"""
    workspace = await _get_workspace(workspace_id, db)
    caller = await ensure_member(workspace_id, user, db)

    if member_user_id != user.id and caller.role != WorkspaceRole.ADMIN:
        raise HTTPException(status_code=403, detail="Only workspace admins can perform this action")
    if member_user_id == workspace.owner_id:
        raise HTTPException(status_code=400, detail="The workspace owner cannot be removed")

    target = await get_membership(workspace_id, member_user_id, db)
    if not target:
        raise HTTPException(status_code=404, detail="Member not found")

    await db.delete(target)
    await db.execute(delete(OnboardingProgress).where(
        OnboardingProgress.workspace_id == workspace_id,
        OnboardingProgress.user_id == member_user_id,
    ))
    await log_activity(db, workspace_id, user.id,
                       "left" if member_user_id == user.id else "removed", "member", member_user_id)
    await db.commit()
    return {"status": "removed", "user_id": member_user_id}


@router.get("/{workspace_id}/users")
async def list_workspace_users(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Compact user list for assignee pickers"""
    await ensure_member(workspace_id, user, db)
    stmt = (
        select(User)
        .join(WorkspaceMember, WorkspaceMember.user_id == User.id)
        .where(WorkspaceMember.workspace_id == workspace_id, User.deleted_at.is_(None))
        .order_by(User.name.asc())
    )
    users = (await db.execute(stmt)).scalars().all()
    return [
        {"id": u.id, "name": u.name or "", "email": u.email, "avatar_url": u.avatar_url}
        for u in users
    ]


# ============================================================
# INVITATIONS
# ============================================================

@router.post("/{workspace_id}/invitations", response_model=InvitationOut, status_code=201)
async def create_invitation(
    workspace_id: str,
    data: InvitationCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await _get_workspace(workspace_id, db)
    await ensure_admin(workspace_id, user, db)
    email = data.email.lower().strip()

    existing_user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if existing_user and await get_membership(workspace_id, existing_user.id, db):
        raise HTTPException(status_code=400, detail="User is already a member of this workspace")

    pending = await db.execute(
        select(WorkspaceInvitation).where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.email == email,
            WorkspaceInvitation.accepted_at.is_(None),
            WorkspaceInvitation.expires_at > utcnow(),
        )
    )
    if pending.scalars().first():
        raise HTTPException(status_code=400, detail="An invitation is already pending for this email")

    await check_member_limit(workspace_id, db)

    inv = WorkspaceInvitation(
        workspace_id=workspace_id,
        email=email,
        role=data.role,
        token=secrets.token_hex(32),
        invited_by=user.id,
        expires_at=utcnow() + timedelta(days=INVITATION_EXPIRY_DAYS),
    )
    db.add(inv)
    await db.flush()

    queue_workspace_invite(db, email, user.name, workspace.name, f"{client_url()}/invite/{inv.token}")
    await log_activity(db, workspace_id, user.id, "invited", "member", inv.id,
                       {"email": email, "role": data.role.value})
    record_audit(db, "invitation.created", user_id=user.id, workspace_id=workspace_id,
                 resource_type="invitation", resource_id=inv.id, request=request)
    await db.commit()
    await db.refresh(inv)
    return _invitation_out(inv)


@router.get("/{workspace_id}/invitations", response_model=List[InvitationOut])
async def list_invitations(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Pending (unaccepted, unexpired) invitations"""
    await ensure_admin(workspace_id, user, db)
    stmt = (
        select(WorkspaceInvitation)
        .where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.accepted_at.is_(None),
            WorkspaceInvitation.expires_at > utcnow(),
        )
        .order_by(WorkspaceInvitation.created_at.desc())
    )
    return [_invitation_out(inv) for inv in (await db.execute(stmt)).scalars().all()]


@router.delete("/{workspace_id}/invitations/{invitation_id}")
async def revoke_invitation(
    workspace_id: str,
    invitation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await ensure_admin(workspace_id, user, db)
    result = await db.execute(
        select(WorkspaceInvitation).where(
            WorkspaceInvitation.id == invitation_id,
            WorkspaceInvitation.workspace_id == workspace_id,
        )
    )
    inv = result.scalar_one_or_none()
    if not inv:
        raise HTTPException(status_code=404, detail="Invitation not found")

    await db.delete(inv)
    await db.commit()
    return {"status": "revoked", "invitation_id": invitation_id}


# ============================================================
# ONBOARDING
# ============================================================

def _progress_out(progress: Optional[OnboardingProgress]) -> dict:
    return {
        "current_step": min(progress.current_step or 1, TOTAL_ONBOARDING_STEPS) if progress else 1,
        "steps_completed": list(progress.steps_completed or []) if progress else [],
        "total_steps": TOTAL_ONBOARDING_STEPS,
    }


async def _find_progress(workspace_id: str, user_id: str, db: AsyncSession) -> Optional[OnboardingProgress]:
    stmt = select(OnboardingProgress).where(
        OnboardingProgress.workspace_id == workspace_id,
        OnboardingProgress.user_id == user_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _progress_for(workspace_id: str, user_id: str, db: AsyncSession) -> OnboardingProgress:
    """Existing row or a new one at step 1"""
    progress = await _find_progress(workspace_id, user_id, db)
    if progress is None:
        progress = OnboardingProgress(
            workspace_id=workspace_id, user_id=user_id, current_step=1, steps_completed=[],
        )
        db.add(progress)
    return progress


@router.get("/{workspace_id}/onboarding")
async def get_onboarding(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Welcome-flow state plus the workspace, inviter and member context the flow displays"""
    workspace = await _get_workspace(workspace_id, db)
    membership = await ensure_member(workspace_id, user, db)
    progress = await _find_progress(workspace_id, user.id, db)

    owner = await db.get(User, workspace.owner_id) if workspace.owner_id else None
    profile = await db.get(User, user.id)

    inviter_stmt = (
        select(WorkspaceInvitation, User)
        .outerjoin(User, User.id == WorkspaceInvitation.invited_by)
        .where(
            WorkspaceInvitation.workspace_id == workspace_id,
            func.lower(WorkspaceInvitation.email) == user.email.lower(),
        )
        .order_by(WorkspaceInvitation.accepted_at.desc().nulls_last())
        .limit(1)
    )
    invite_row = (await db.execute(inviter_stmt)).first()
    invitation = None
    if invite_row:
        inv, inviter = invite_row
        invitation = {
            "inviter_name": inviter.name if inviter else None,
            "inviter_email": inviter.email if inviter else None,
            "role": _role(inv.role),
        }

    members_stmt = (
        select(User, WorkspaceMember.role)
        .join(WorkspaceMember, WorkspaceMember.user_id == User.id)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.role.asc(), User.name.asc())
        .limit(10)
    )
    members = [
        {"id": u.id, "name": u.name or "", "avatar_url": u.avatar_url, "role": _role(role)}
        for u, role in (await db.execute(members_stmt)).all()
    ]

    category_count = (await db.execute(
        select(func.count(Category.id)).where(Category.workspace_id == workspace_id)
    )).scalar() or 0
    task_count = (await db.execute(
        select(func.count(Task.id)).where(Task.workspace_id == workspace_id)
    )).scalar() or 0

    completed_at = (progress.completed_at if progress else None) or membership.onboarding_completed_at
    return {
        "onboarding": {
            "is_completed": completed_at is not None,
            "is_skipped": bool(progress and progress.skipped_at),
            **_progress_out(progress),
            "steps": ONBOARDING_STEPS,
            "completed_at": _ts(completed_at),
            "skipped_at": _ts(progress.skipped_at) if progress else None,
        },
        "workspace": {
            "id": workspace.id,
            "name": workspace.name,
            "owner_name": owner.name if owner else None,
            "member_count": await _member_count(workspace_id, db),
            "category_count": category_count,
            "task_count": task_count,
        },
        "invitation": invitation,
        "user_role": _role(membership.role),
        "user": {
            "id": profile.id,
            "name": profile.name,
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "email": profile.email,
            "avatar_url": profile.avatar_url,
        },
        "members": members,
    }


@router.post("/{workspace_id}/onboarding/start")
async def start_onboarding(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Start, or restart from step 1"""
    membership = await ensure_member(workspace_id, user, db)
    progress = await _progress_for(workspace_id, user.id, db)
    progress.current_step = 1
    progress.steps_completed = []
    progress.skipped_at = None
    progress.completed_at = None
    membership.onboarding_completed_at = None
    await db.commit()
    return {"message": "Onboarding started", "progress": _progress_out(progress)}


@router.put("/{workspace_id}/onboarding/progress")
async def update_onboarding_progress(
    workspace_id: str,
    data: OnboardingStepUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Mark a step done (by number or name); the current step never moves backwards"""
    if not data.step and not data.step_name:
        raise HTTPException(status_code=400, detail="step or step_name is required")
    if data.step_name and data.step_name not in ONBOARDING_STEPS:
        raise HTTPException(status_code=400, detail=f"Unknown step: {data.step_name}")

    step = data.step or ONBOARDING_STEPS.index(data.step_name) + 1
    if not 1 <= step <= TOTAL_ONBOARDING_STEPS:
        raise HTTPException(
            status_code=400, detail=f"Invalid step. Must be between 1 and {TOTAL_ONBOARDING_STEPS}",
        )
    step_name = data.step_name or ONBOARDING_STEPS[step - 1]

    await ensure_member(workspace_id, user, db)
    progress = await _progress_for(workspace_id, user.id, db)
    progress.current_step = max(progress.current_step or 1, step + 1)
    done = list(progress.steps_completed or [])
    if step_name not in done:
        progress.steps_completed = done + [step_name]
    if step_name == "profile":
        progress.profile_updated = True
    await db.commit()
    return {"message": f'Step "{step_name}" completed', "progress": _progress_out(progress)}


@router.post("/{workspace_id}/onboarding/complete")
async def complete_onboarding(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    membership = await ensure_member(workspace_id, user, db)
    progress = await _progress_for(workspace_id, user.id, db)
    now = utcnow()
    progress.completed_at = now
    progress.current_step = TOTAL_ONBOARDING_STEPS
    progress.steps_completed = list(ONBOARDING_STEPS)
    membership.onboarding_completed_at = now
    await db.commit()
    return {"message": "Onboarding completed successfully"}


@router.post("/{workspace_id}/onboarding/skip")
async def skip_onboarding(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Skipping also stamps the membership so the flow is not offered again"""
    membership = await ensure_member(workspace_id, user, db)
    progress = await _progress_for(workspace_id, user.id, db)
    now = utcnow()
    progress.skipped_at = now
    membership.onboarding_completed_at = now
    await db.commit()
    return {"message": "Onboarding skipped"}
