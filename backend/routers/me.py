# routers/me.py — Current user profile, preferences, my tasks and data export
import csv
import io
import logging
import os
import secrets
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func, case, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from activity import record_audit
from auth import AuthService, CurrentUser, get_current_user, check_password_policy
from database import get_db_session
from models import (
    ActivityLog, Category, Comment, DigestMode, OnboardingProgress, Task, TaskAssignment,
    TaskPriority, TaskStatus, User, Workspace, WorkspaceMember, utcnow,
)
from routers.tasks import _task_options, _tasks_to_out

logger = logging.getLogger("todoria.me")

router = APIRouter(prefix="/api/v1/me", tags=["Me"])

AVATAR_DIR = Path(os.getenv("AVATAR_DIR", "uploads/avatars"))
AVATAR_URL_PREFIX = "/uploads/avatars"
AVATAR_MAX_BYTES = 5 * 1024 * 1024
AVATAR_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}
VALID_LANGUAGES = ["en", "es", "fr", "de", "pt", "it"]

CSV_HEADERS = [
    "Title", "Description", "Status", "Priority", "Due Date",
    "Category", "Workspace", "Created At", "Completed At",
]
FORMULA_PREFIXES = ("=", "+", "-", "@")


# --- Schemas ---

class ProfileUpdate(BaseModel):
    first_name: str
    last_name: str

    @field_validator("first_name", "last_name")
    @classmethod
    def name_length(cls, v: str, info) -> str:
        v = v.strip()
        if len(v) < 2 or len(v) > 60:
            label = "First name" if info.field_name == "first_name" else "Last name"
            raise ValueError(f"{label} must be between 2 and 60 characters.")
        return v


class PreferencesUpdate(BaseModel):
    language: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("language")
    @classmethod
    def valid_language(cls, v):
        if v is not None and v not in VALID_LANGUAGES:
            raise ValueError(f"Invalid language. Valid options: {', '.join(VALID_LANGUAGES)}")
        return v

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError("Invalid timezone format.")
        return v


class NotificationsUpdate(BaseModel):
    email_notifications_enabled: Optional[bool] = None
    email_digest_mode: Optional[DigestMode] = None


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_policy(v)


class AccountDelete(BaseModel):
    password: str = Field(..., min_length=1)


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _enum(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def _profile(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name or "",
        "first_name": u.first_name,
        "last_name": u.last_name,
        "avatar_url": u.avatar_url,
        "role": _enum(u.role),
        "language": u.language,
        "timezone": u.timezone,
        "email_notifications_enabled": bool(u.email_notifications_enabled),
        "email_digest_mode": _enum(u.email_digest_mode),
        "email_verified": bool(u.email_verified),
        "last_login_at": _ts(u.last_login_at),
        "created_at": _ts(u.created_at),
    }


async def _get_user(user: CurrentUser, db: AsyncSession) -> User:
    user_obj = await db.get(User, user.id)
    if not user_obj:
        raise HTTPException(status_code=404, detail="User not found")
    return user_obj


def _remove_avatar_file(avatar_url: Optional[str]) -> None:
    if not avatar_url or not avatar_url.startswith(AVATAR_URL_PREFIX + "/"):
        return
    path = AVATAR_DIR / avatar_url.rsplit("/", 1)[-1]
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove avatar file {path}: {e}")


def csv_cell(value) -> str:
    """Stringify for CSV; cells that a spreadsheet would evaluate get a leading quote"""
    if value is None:
        return ""
    text = str(value)
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def _my_tasks_query(user_id: str):
    """Tasks assigned to the user, limited to workspaces they still belong to"""
    return (
        select(Task)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .join(WorkspaceMember, (WorkspaceMember.workspace_id == Task.workspace_id)
              & (WorkspaceMember.user_id == user_id))
        .where(TaskAssignment.user_id == user_id)
    )


PRIORITY_RANK = case(
    (Task.priority == TaskPriority.URGENT, 4),
    (Task.priority == TaskPriority.HIGH, 3),
    (Task.priority == TaskPriority.MEDIUM, 2),
    else_=1,
)

SORT_COLUMNS = {
    "due_date": Task.due_date,
    "created_at": Task.created_at,
    "title": Task.title,
    "priority": PRIORITY_RANK,
}


# ============================================================
# PROFILE
# ============================================================

@router.get("")
async def get_profile(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _profile(await _get_user(user, db))


@router.patch("")
async def update_profile(
    data: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    user_obj = await _get_user(user, db)
    user_obj.first_name = data.first_name
    user_obj.last_name = data.last_name
    user_obj.name = f"{data.first_name} {data.last_name}"
    await db.commit()
    return _profile(user_obj)


@router.patch("/preferences")
async def update_preferences(
    data: PreferencesUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    if data.language is None and data.timezone is None:
        raise HTTPException(status_code=400, detail="No valid fields to update.")
    user_obj = await _get_user(user, db)
    if data.language is not None:
        user_obj.language = data.language
    if data.timezone is not None:
        user_obj.timezone = data.timezone
    await db.commit()
    return {"language": user_obj.language, "timezone": user_obj.timezone}


@router.patch("/notifications")
async def update_notifications(
    data: NotificationsUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    if data.email_notifications_enabled is None and data.email_digest_mode is None:
        raise HTTPException(status_code=400, detail="No valid fields to update.")
    user_obj = await _get_user(user, db)
    if data.email_notifications_enabled is not None:
        user_obj.email_notifications_enabled = data.email_notifications_enabled
    if data.email_digest_mode is not None:
        user_obj.email_digest_mode = data.email_digest_mode
    await db.commit()
    return {
        "email_notifications_enabled": bool(user_obj.email_notifications_enabled),
        "email_digest_mode": _enum(user_obj.email_digest_mode),
    }


@router.post("/avatar")
async def upload_avatar(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ext = AVATAR_TYPES.get(file.content_type or "")
    if not ext:
        raise HTTPException(status_code=400, detail="Avatar must be a PNG, JPEG, GIF or WebP image")

    content = await file.read(AVATAR_MAX_BYTES + 1)
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded.")
    if len(content) > AVATAR_MAX_BYTES:
        raise HTTPException(status_code=400, detail="Avatar must be 5 MB or smaller")

    AVATAR_DIR.mkdir(parents=True, exist_ok=True)
    filename = f"{user.id}-{uuid.uuid4().hex[:12]}.{ext}"
    (AVATAR_DIR / filename).write_bytes(content)

    user_obj = await _get_user(user, db)
    previous = user_obj.avatar_url
    user_obj.avatar_url = f"{AVATAR_URL_PREFIX}/{filename}"
    await db.commit()
    _remove_avatar_file(previous)
    return {"avatar_url": user_obj.avatar_url}


@router.delete("/avatar")
async def delete_avatar(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    user_obj = await _get_user(user, db)
    previous = user_obj.avatar_url
    user_obj.avatar_url = None
    await db.commit()
    _remove_avatar_file(previous)
    return {"avatar_url": None}


@router.post("/password")
async def change_password(
    data: PasswordChange,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    user_obj = await _get_user(user, db)
    if not AuthService.verify_password(data.current_password, user_obj.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user_obj.password_hash = AuthService.hash_password(data.new_password)
    record_audit(db, "user.password_changed", user_id=user.id, resource_type="user",
                 resource_id=user.id, request=request)
    await db.commit()
    return {"status": "password_changed", "message": "Password updated successfully"}


@router.delete("/account")
async def delete_account(
    data: AccountDelete,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft delete and anonymise. Solo workspaces the user owns are removed."""
    user_obj = await _get_user(user, db)
    if not AuthService.verify_password(data.password, user_obj.password_hash):
        raise HTTPException(status_code=400, detail="Password is incorrect")

    owned = (await db.execute(select(Workspace).where(Workspace.owner_id == user.id))).scalars().all()
    for ws in owned:
        others = (await db.execute(
            select(func.count(WorkspaceMember.id)).where(
                WorkspaceMember.workspace_id == ws.id,
                WorkspaceMember.user_id != user.id,
            )
        )).scalar() or 0
        if others:
            raise HTTPException(
                status_code=400,
                detail=f"You own workspace \"{ws.name}\" which has other members. "
                       "Transfer or delete it before deleting your account.",
            )

    owned_ids = [ws.id for ws in owned]
    if owned_ids:
        await db.execute(delete(Workspace).where(Workspace.id.in_(owned_ids)))
    await db.execute(delete(WorkspaceMember).where(WorkspaceMember.user_id == user.id))
    await db.execute(delete(OnboardingProgress).where(OnboardingProgress.user_id == user.id))
    await db.execute(delete(TaskAssignment).where(TaskAssignment.user_id == user.id))

    _remove_avatar_file(user_obj.avatar_url)
    user_obj.email = f"deleted-{user_obj.id}@deleted.todoria.invalid"
    user_obj.name = "Deleted User"
    user_obj.first_name = None
    user_obj.last_name = None
    user_obj.avatar_url = None
    user_obj.password_hash = AuthService.hash_password(secrets.token_urlsafe(32))
    user_obj.verification_token_hash = None
    user_obj.reset_token_hash = None
    user_obj.email_notifications_enabled = False
    user_obj.is_active = False
    user_obj.deleted_at = utcnow()

    record_audit(db, "user.deleted", user_id=user.id, resource_type="user", resource_id=user.id,
                 details={"deleted_workspaces": owned_ids}, request=request)
    await db.commit()
    logger.info(f"Account {user.id} deleted and anonymised")
    return {"status": "deleted", "message": "Your account has been deleted"}


# ============================================================
# MY TASKS
# ============================================================

@router.get("/tasks")
async def get_my_tasks(
    status: Optional[str] = Query(None, pattern="^(open|completed)$"),
    sort: str = Query("due_date", pattern="^(due_date|created_at|title|priority)$"),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    workspace_id: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks assigned to me; null values sort last whatever the order"""
    stmt = _my_tasks_query(user.id).options(*_task_options())
    if workspace_id:
        stmt = stmt.where(Task.workspace_id == workspace_id)
    if status == "open":
        stmt = stmt.where(Task.status != TaskStatus.COMPLETED)
    elif status == "completed":
        stmt = stmt.where(Task.status == TaskStatus.COMPLETED)

    column = SORT_COLUMNS[sort]
    stmt = stmt.order_by(
        column.is_(None),
        column.desc() if order == "desc" else column.asc(),
        Task.created_at.desc(),
    )

    tasks = list((await db.execute(stmt)).scalars().all())
    return {"tasks": await _tasks_to_out(tasks, db), "count": len(tasks)}


@router.get("/tasks/export")
async def export_tasks_csv(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = (
        _my_tasks_query(user.id)
        .add_columns(Category.name, Workspace.name)
        .outerjoin(Category, Category.id == Task.category_id)
        .join(Workspace, Workspace.id == Task.workspace_id)
        .order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc())
    )
    rows = (await db.execute(stmt)).all()

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for task, category_name, workspace_name in rows:
        writer.writerow([csv_cell(v) for v in (
            task.title,
            task.description,
            _enum(task.status),
            _enum(task.priority),
            _ts(task.due_date),
            category_name,
            workspace_name,
            _ts(task.created_at),
            _ts(task.completed_at),
        )])

    filename = f"my-tasks-{date.today().isoformat()}.csv"
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export")
async def export_my_data(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """GDPR data export: everything we hold that is tied to this account"""
    user_obj = await _get_user(user, db)

    memberships = (await db.execute(
        select(WorkspaceMember, Workspace.name)
        .join(Workspace, Workspace.id == WorkspaceMember.workspace_id)
        .where(WorkspaceMember.user_id == user.id)
    )).all()

    created = (await db.execute(
        select(Task).where(Task.created_by == user.id).order_by(Task.created_at.asc())
    )).scalars().all()

    assigned = (await db.execute(
        select(Task)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .where(TaskAssignment.user_id == user.id)
        .order_by(Task.created_at.asc())
    )).scalars().all()

    comments = (await db.execute(
        select(Comment).where(Comment.author_id == user.id).order_by(Comment.created_at.asc())
    )).scalars().all()

    activity = (await db.execute(
        select(ActivityLog)
        .where(ActivityLog.user_id == user.id)
        .options(selectinload(ActivityLog.user))
        .order_by(ActivityLog.created_at.desc())
        .limit(1000)
    )).scalars().all()

    def task_dict(t: Task) -> dict:
        return {
            "id": t.id,
            "workspace_id": t.workspace_id,
            "title": t.title,
            "description": t.description,
            "status": _enum(t.status),
            "priority": _enum(t.priority),
            "due_date": _ts(t.due_date),
            "completed_at": _ts(t.completed_at),
            "created_at": _ts(t.created_at),
        }

    payload = {
        "exported_at": _ts(utcnow()),
        "profile": _profile(user_obj),
        "workspaces": [
            {
                "workspace_id": m.workspace_id,
                "workspace_name": name,
                "role": _enum(m.role),
                "joined_at": _ts(m.joined_at),
            }
            for m, name in memberships
        ],
        "tasks_created": [task_dict(t) for t in created],
        "tasks_assigned": [task_dict(t) for t in assigned],
        "comments": [
            {"id": c.id, "task_id": c.task_id, "content": c.content, "created_at": _ts(c.created_at)}
            for c in comments
        ],
        "activity": [
            {
                "action": a.action,
                "entity_type": a.entity_type,
                "entity_id": a.entity_id,
                "workspace_id": a.workspace_id,
                "created_at": _ts(a.created_at),
            }
            for a in activity
        ],
    }
    return JSONResponse(
        content=payload,
        headers={"Content-Disposition": 'attachment; filename="todoria-data-export.json"'},
    )
