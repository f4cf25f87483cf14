# routers/tasks.py — Tasks, subtasks, drag & drop positions and comments
import base64
import binascii
import json
import logging
from datetime import date, datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func, update, delete, or_, and_, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from activity import log_activity
from auth import get_current_user, CurrentUser
from database import get_db_session
from email_service import queue_task_assignment
from models import (
    Category, Comment, Task, TaskAssignment, TaskPriority, TaskStatus,
    User, WorkspaceMember, WorkspaceRole, utcnow,
)
from plan_limits import check_task_limit, require_active_subscription
from workspace_access import ensure_editor, ensure_member

logger = logging.getLogger("todoria.tasks")

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

COMMENT_PAGE_DEFAULT = 20
COMMENT_PAGE_MAX = 100
COMMENT_MAX_LENGTH = 5000
SUBTASK_CATEGORY_ERROR = "Subtasks stay in their parent's category; move the parent instead"


# ============================================================
# SCHEMAS
# ============================================================

def _parse_due_date(v):
    """Accept YYYY-MM-DD or a full ISO timestamp; only the date part is kept"""
    if v is None or isinstance(v, date):
        return v
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return None
        return v.split("T")[0]
    return v


class TaskCreate(BaseModel):
    workspace_id: str
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    category_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[date] = None
    assignee_ids: List[str] = Field(default_factory=list)

    _due = field_validator("due_date", mode="before")(_parse_due_date)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Task title is required")
        return v


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    category_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[date] = None
    assignee_ids: Optional[List[str]] = None

    _due = field_validator("due_date", mode="before")(_parse_due_date)


class TaskPositionUpdate(BaseModel):
    category_id: Optional[str] = None
    position: int = Field(..., ge=0)


class AssigneeOut(BaseModel):
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None


class TaskOut(BaseModel):
    id: str
    workspace_id: str
    title: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    priority: str
    status: str
    due_date: Optional[str] = None
    completed_at: Optional[str] = None
    position: int = 0
    parent_task_id: Optional[str] = None
    created_by: Optional[str] = None
    creator_name: Optional[str] = None
    assignees: List[AssigneeOut] = Field(default_factory=list)
    subtask_count: int = 0
    completed_subtask_count: int = 0
    comment_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskListOut(BaseModel):
    tasks: List[TaskOut]
    next_cursor: Optional[str] = None
    has_more: bool = False


class CommentCreate(BaseModel):
    content: str = Field(..., max_length=COMMENT_MAX_LENGTH)

    @field_validator("content")
    @classmethod
    def content_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment content is required")
        return v


class CommentUpdate(CommentCreate):
    pass


class CommentOut(BaseModel):
    id: str
    task_id: str
    content: str
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    author_avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _enum(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"o": offset}).encode()).decode()


def decode_cursor(cursor: str) -> int:
    try:
        offset = int(json.loads(base64.urlsafe_b64decode(cursor.encode()))["o"])
    except (binascii.Error, ValueError, KeyError, TypeError):
        raise HTTPException(status_code=400, detail="Invalid cursor")
    if offset < 0:
        raise HTTPException(status_code=400, detail="Invalid cursor")
    return offset


def _same_category(category_id: Optional[str]):
    return Task.category_id.is_(None) if category_id is None else Task.category_id == category_id


def _task_options():
    return (
        selectinload(Task.category),
        selectinload(Task.creator),
        selectinload(Task.assignments).selectinload(TaskAssignment.user),
    )


async def _load_task(task_id: str, db: AsyncSession) -> Task:
    stmt = (
        select(Task)
        .where(Task.id == task_id)
        .options(*_task_options())
        .execution_options(populate_existing=True)
    )
    task = (await db.execute(stmt)).scalar_one_or_none()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


async def _tasks_to_out(tasks: List[Task], db: AsyncSession) -> List[TaskOut]:
    """Batch conversion: one query each for subtask and comment counts"""
    ids = [t.id for t in tasks]
    sub_counts, done_counts, comment_counts = {}, {}, {}
    if ids:
        sub_stmt = (
            select(
                Task.parent_task_id,
                func.count(Task.id),
                func.sum(case((Task.status == TaskStatus.COMPLETED, 1), else_=0)),
            )
            .where(Task.parent_task_id.in_(ids))
            .group_by(Task.parent_task_id)
        )
        for parent_id, total, done in (await db.execute(sub_stmt)).all():
            sub_counts[parent_id] = total
            done_counts[parent_id] = int(done or 0)

        com_stmt = (
            select(Comment.task_id, func.count(Comment.id))
            .where(Comment.task_id.in_(ids))
            .group_by(Comment.task_id)
        )
        comment_counts = dict((await db.execute(com_stmt)).all())

    out = []
    for t in tasks:
        assignees = sorted(
            (a.user for a in t.assignments if a.user is not None),
            key=lambda u: (u.name or "").lower(),
        )
        out.append(TaskOut(
            id=t.id,
            workspace_id=t.workspace_id,
            title=t.title,
            description=t.description,
            category_id=t.category_id,
            category_name=t.category.name if t.category else None,
            category_color=t.category.color if t.category else None,
            priority=_enum(t.priority),
            status=_enum(t.status),
            due_date=_ts(t.due_date),
            completed_at=_ts(t.completed_at),
            position=t.position or 0,
            parent_task_id=t.parent_task_id,
            created_by=t.created_by,
            creator_name=t.creator.name if t.creator else None,
            assignees=[
                AssigneeOut(id=u.id, name=u.name or "", email=u.email, avatar_url=u.avatar_url)
                for u in assignees
            ],
            subtask_count=sub_counts.get(t.id, 0),
            completed_subtask_count=done_counts.get(t.id, 0),
            comment_count=comment_counts.get(t.id, 0),
            created_at=_ts(t.created_at),
            updated_at=_ts(t.updated_at),
        ))
    return out


async def _task_to_out(task: Task, db: AsyncSession) -> TaskOut:
    return (await _tasks_to_out([task], db))[0]


async def _check_category(category_id: Optional[str], workspace_id: str, db: AsyncSession) -> None:
    if category_id is None:
        return
    cat = await db.get(Category, category_id)
    if not cat or cat.workspace_id != workspace_id:
        raise HTTPException(status_code=400, detail="Category not found in this workspace")


async def _check_assignees(assignee_ids: List[str], workspace_id: str, db: AsyncSession) -> List[str]:
    unique_ids = list(dict.fromkeys(assignee_ids))
    if not unique_ids:
        return []
    stmt = select(WorkspaceMember.user_id).where(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id.in_(unique_ids),
    )
    members = set((await db.execute(stmt)).scalars().all())
    if len(members) != len(unique_ids):
        raise HTTPException(status_code=400, detail="All assignees must be members of this workspace")
    return unique_ids


async def _next_position(category_id: Optional[str], workspace_id: str, db: AsyncSession) -> int:
    stmt = select(func.max(Task.position)).where(
        Task.workspace_id == workspace_id, _same_category(category_id),
    )
    max_pos = (await db.execute(stmt)).scalar()
    return 0 if max_pos is None else max_pos + 1


async def _compact_positions(category_id: Optional[str], workspace_id: str, db: AsyncSession) -> None:
    """Renumber a category 0..n-1 in its current order"""
    await db.flush()
    stmt = (
        select(Task)
        .where(Task.workspace_id == workspace_id, _same_category(category_id))
        .order_by(Task.position.asc(), Task.created_at.asc())
        .execution_options(populate_existing=True)
    )
    for index, task in enumerate((await db.execute(stmt)).scalars().all()):
        if task.position != index:
            task.position = index


async def _move_subtasks(parent: Task, category_id: Optional[str], db: AsyncSession) -> None:
    """Subtasks follow their parent, appended to the destination in sibling order"""
    await db.flush()
    stmt = (
        select(Task)
        .where(Task.parent_task_id == parent.id)
        .order_by(Task.position.asc(), Task.created_at.asc())
        .execution_options(populate_existing=True)
    )
    subtasks = (await db.execute(stmt)).scalars().all()
    if not subtasks:
        return
    start = await _next_position(category_id, parent.workspace_id, db)
    for offset, sub in enumerate(subtasks):
        sub.category_id = category_id
        sub.position = start + offset


async def _notify_assignees(task: Task, user_ids: List[str], actor: CurrentUser, db: AsyncSession) -> None:
    """Queue assignment emails for everyone but the actor who has notifications on"""
    targets = [uid for uid in user_ids if uid != actor.id]
    if not targets:
        return
    stmt = select(User).where(
        User.id.in_(targets),
        User.email_notifications_enabled.is_(True),
        User.deleted_at.is_(None),
    )
    for assignee in (await db.execute(stmt)).scalars().all():
        queue_task_assignment(
            db, assignee.email, assignee.first_name or assignee.name,
            task.id, task.title,
            assigned_by_name=actor.name,
            task_description=task.description,
            due_date=_ts(task.due_date),
            priority=_enum(task.priority),
        )


async def _get_task_for(task_id: str, user: CurrentUser, db: AsyncSession, editor: bool = False) -> Task:
    task = await db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if editor:
        await ensure_editor(task.workspace_id, user, db)
    else:
        await ensure_member(task.workspace_id, user, db)
    return task


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.get("", response_model=TaskListOut)
async def list_tasks(
    workspace_id: str = Query(...),
    category_id: Optional[str] = None,
    assignee_ids: Optional[str] = Query(None, description="Comma-separated user ids (OR)"),
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    search: Optional[str] = Query(None, max_length=200),
    limit: Optional[int] = Query(None, ge=1, le=500),
    cursor: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks ordered by category position, then task position"""
    await ensure_member(workspace_id, user, db)

    stmt = (
        select(Task)
        .outerjoin(Category, Category.id == Task.category_id)
        .where(Task.workspace_id == workspace_id)
        .options(*_task_options())
        .order_by(
            Category.position.is_(None),
            Category.position.asc(),
            Task.position.asc(),
            Task.created_at.asc(),
        )
    )

    if category_id:
        stmt = stmt.where(Task.category_id == category_id)
    if assignee_ids:
        ids = [i.strip() for i in assignee_ids.split(",") if i.strip()]
        if ids:
            stmt = stmt.where(Task.id.in_(
                select(TaskAssignment.task_id).where(TaskAssignment.user_id.in_(ids))
            ))
    if status:
        stmt = stmt.where(Task.status == status)
    if priority:
        stmt = stmt.where(Task.priority == priority)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))

    offset = decode_cursor(cursor) if cursor else 0
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit + 1)

    tasks = list((await db.execute(stmt)).scalars().all())
    has_more = limit is not None and len(tasks) > limit
    if has_more:
        tasks = tasks[:limit]

    return TaskListOut(
        tasks=await _tasks_to_out(tasks, db),
        next_cursor=encode_cursor(offset + len(tasks)) if has_more else None,
        has_more=has_more,
    )


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _load_task(task_id, db)
    await ensure_member(task.workspace_id, user, db)
    return await _task_to_out(task, db)


@router.get("/{task_id}/subtasks", response_model=List[TaskOut])
async def list_subtasks(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    parent = await _get_task_for(task_id, user, db)
    stmt = (
        select(Task)
        .where(Task.parent_task_id == parent.id)
        .options(*_task_options())
        .order_by(Task.position.asc(), Task.created_at.asc())
    )
    return await _tasks_to_out(list((await db.execute(stmt)).scalars().all()), db)


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await ensure_editor(data.workspace_id, user, db)
    await require_active_subscription(data.workspace_id, db)

    category_id = data.category_id
    if data.parent_task_id:
        parent = await db.get(Task, data.parent_task_id)
        if not parent or parent.workspace_id != data.workspace_id:
            raise HTTPException(status_code=400, detail="Parent task not found in this workspace")
        if parent.parent_task_id is not None:
            raise HTTPException(status_code=400, detail="Subtasks cannot have subtasks")
        # Subtasks always live in the parent's category
        category_id = parent.category_id
    else:
        # Only top-level tasks count against the plan
        await check_task_limit(data.workspace_id, db)

    await _check_category(category_id, data.workspace_id, db)
    assignee_ids = await _check_assignees(data.assignee_ids, data.workspace_id, db)

    task = Task(
        workspace_id=data.workspace_id,
        category_id=category_id,
        parent_task_id=data.parent_task_id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        status=data.status,
        due_date=data.due_date,
        completed_at=utcnow() if data.status == TaskStatus.COMPLETED else None,
        position=await _next_position(category_id, data.workspace_id, db),
        created_by=user.id,
    )
    db.add(task)
    await db.flush()

    for uid in assignee_ids:
        db.add(TaskAssignment(task_id=task.id, user_id=uid))
    await _notify_assignees(task, assignee_ids, user, db)
    await log_activity(db, task.workspace_id, user.id, "created", "task", task.id, {
        "title": task.title,
        "parent_task_id": task.parent_task_id,
    })
    await db.commit()

    return await _task_to_out(await _load_task(task.id, db), db)


@router.put("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Partial update; only fields present in the body are applied"""
    fields = data.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    task = await _load_task(task_id, db)
    await ensure_editor(task.workspace_id, user, db)
    await require_active_subscription(task.workspace_id, db)

    if "title" in fields and not (fields["title"] or "").strip():
        raise HTTPException(status_code=400, detail="Task title is required")
    for required in ("priority", "status"):
        if required in fields and fields[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} cannot be null")

    changed = set()
    if "category_id" in fields and fields["category_id"] != task.category_id:
        if task.parent_task_id:
            raise HTTPException(status_code=400, detail=SUBTASK_CATEGORY_ERROR)
        await _check_category(fields["category_id"], task.workspace_id, db)
        changed.add("category_id")
        old_category_id = task.category_id
        position = await _next_position(fields["category_id"], task.workspace_id, db)
        task.category_id = fields["category_id"]
        task.position = position
        await _move_subtasks(task, task.category_id, db)
        await _compact_positions(old_category_id, task.workspace_id, db)

    completed_now = False
    if "status" in fields:
        new_status = TaskStatus(fields["status"])
        old_status = TaskStatus(task.status)
        if new_status == TaskStatus.COMPLETED and old_status != TaskStatus.COMPLETED:
            task.completed_at = utcnow()
            completed_now = True
        elif new_status != TaskStatus.COMPLETED:
            task.completed_at = None
        if new_status != old_status:
            changed.add("status")
        task.status = new_status

    for name in ("title", "description", "priority", "due_date"):
        if name in fields:
            value = fields[name].strip() if name == "title" else fields[name]
            if value != getattr(task, name):
                changed.add(name)
            setattr(task, name, value)

    if "assignee_ids" in fields:
        new_ids = await _check_assignees(fields["assignee_ids"] or [], task.workspace_id, db)
        current = {a.user_id: a for a in task.assignments}
        added = [uid for uid in new_ids if uid not in current]
        removed = [a for uid, a in current.items() if uid not in new_ids]
        for assignment in removed:
            await db.delete(assignment)
        for uid in added:
            db.add(TaskAssignment(task_id=task.id, user_id=uid))
        if added or removed:
            changed.add("assignee_ids")
        await _notify_assignees(task, added, user, db)

    task.updated_at = utcnow()
    await log_activity(db, task.workspace_id, user.id, "completed" if completed_now else "updated",
                       "task", task.id, {"title": task.title, "changes": sorted(changed)})
    await db.commit()

    return await _task_to_out(await _load_task(task.id, db), db)


@router.patch("/{task_id}/position", response_model=TaskOut)
async def update_task_position(
    task_id: str,
    data: TaskPositionUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Drag & drop: insert the task at `position` in the target category.

    Source gap is closed first, then everything at or after the target
    position in the destination category moves down by one.
    """
    task = await _get_task_for(task_id, user, db, editor=True)
    await require_active_subscription(task.workspace_id, db)
    await _check_category(data.category_id, task.workspace_id, db)

    old_category_id, old_position = task.category_id, task.position or 0
    new_category_id = data.category_id
    if task.parent_task_id and new_category_id != old_category_id:
        raise HTTPException(status_code=400, detail=SUBTASK_CATEGORY_ERROR)

    await db.execute(
        update(Task)
        .where(
            Task.workspace_id == task.workspace_id,
            _same_category(old_category_id),
            Task.id != task.id,
            Task.position > old_position,
        )
        .values(position=Task.position - 1)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Task)
        .where(
            Task.workspace_id == task.workspace_id,
            _same_category(new_category_id),
            Task.id != task.id,
            Task.position >= data.position,
        )
        .values(position=Task.position + 1)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Task)
        .where(Task.id == task.id)
        .values(category_id=new_category_id, position=data.position, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if new_category_id != old_category_id:
        await _move_subtasks(task, new_category_id, db)
        await _compact_positions(old_category_id, task.workspace_id, db)

    action = "moved" if old_category_id != new_category_id else "reordered"
    await log_activity(db, task.workspace_id, user.id, action, "task", task.id, {
        "title": task.title,
        "from_category_id": old_category_id,
        "to_category_id": new_category_id,
        "position": data.position,
    })
    await db.commit()

    return await _task_to_out(await _load_task(task.id, db), db)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a task with its subtasks, comments and assignments; close the position gap"""
    task = await _get_task_for(task_id, user, db, editor=True)
    await require_active_subscription(task.workspace_id, db)

    workspace_id, category_id, title = task.workspace_id, task.category_id, task.title
    # Subtasks go with the parent (ON DELETE CASCADE)
    await db.execute(delete(Task).where(Task.id == task_id))
    await _compact_positions(category_id, workspace_id, db)
    await log_activity(db, workspace_id, user.id, "deleted", "task", task_id, {"title": title})
    await db.commit()
    return {"status": "deleted", "task_id": task_id}


# ============================================================
# COMMENT ENDPOINTS
# ============================================================

def _comment_to_out(comment: Comment) -> CommentOut:
    return CommentOut(
        id=comment.id,
        task_id=comment.task_id,
        content=comment.content,
        author_id=comment.author_id,
        author_name=comment.author.name if comment.author else None,
        author_avatar_url=comment.author.avatar_url if comment.author else None,
        created_at=_ts(comment.created_at),
        updated_at=_ts(comment.updated_at),
    )


async def _load_comment(comment_id: str, db: AsyncSession) -> Comment:
    stmt = (
        select(Comment)
        .where(Comment.id == comment_id)
        .options(selectinload(Comment.author), selectinload(Comment.task))
        .execution_options(populate_existing=True)
    )
    comment = (await db.execute(stmt)).scalar_one_or_none()
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


@router.get("/{task_id}/comments")
async def list_comments(
    task_id: str,
    cursor: Optional[str] = None,
    limit: int = Query(COMMENT_PAGE_DEFAULT, ge=1, le=COMMENT_PAGE_MAX),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Oldest first; `cursor` is the id of the last comment already shown"""
    task = await _get_task_for(task_id, user, db)

    stmt = (
        select(Comment)
        .where(Comment.task_id == task.id)
        .options(selectinload(Comment.author))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .limit(limit + 1)
    )
    if cursor:
        anchor = await db.get(Comment, cursor)
        if not anchor or anchor.task_id != task.id:
            raise HTTPException(status_code=400, detail="Invalid cursor")
        stmt = stmt.where(or_(
            Comment.created_at > anchor.created_at,
            and_(Comment.created_at == anchor.created_at, Comment.id > anchor.id),
        ))

    comments = list((await db.execute(stmt)).scalars().all())
    has_more = len(comments) > limit
    if has_more:
        comments = comments[:limit]

    total = (await db.execute(
        select(func.count(Comment.id)).where(Comment.task_id == task.id)
    )).scalar() or 0

    return {
        "comments": [_comment_to_out(c) for c in comments],
        "count": total,
        "next_cursor": comments[-1].id if has_more else None,
        "has_more": has_more,
    }


@router.post("/{task_id}/comments", response_model=CommentOut, status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task_for(task_id, user, db, editor=True)

    comment = Comment(task_id=task.id, author_id=user.id, content=data.content)
    db.add(comment)
    await db.flush()
    await log_activity(db, task.workspace_id, user.id, "commented", "task", task.id,
                       {"title": task.title, "comment_id": comment.id})
    await db.commit()
    return _comment_to_out(await _load_comment(comment.id, db))


@router.put("/comments/{comment_id}", response_model=CommentOut)
async def update_comment(
    comment_id: str,
    data: CommentUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment = await _load_comment(comment_id, db)
    await ensure_member(comment.task.workspace_id, user, db)
    if comment.author_id != user.id:
        raise HTTPException(status_code=403, detail="You can only edit your own comments")

    comment.content = data.content
    comment.updated_at = utcnow()
    await db.commit()
    return _comment_to_out(await _load_comment(comment_id, db))


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Authors delete their own comments; workspace admins delete any"""
    comment = await _load_comment(comment_id, db)
    membership = await ensure_member(comment.task.workspace_id, user, db)
    if comment.author_id != user.id and WorkspaceRole(membership.role) != WorkspaceRole.ADMIN:
        raise HTTPException(status_code=403, detail="You can only delete your own comments")

    workspace_id, task_id = comment.task.workspace_id, comment.task_id
    await db.execute(delete(Comment).where(Comment.id == comment_id))
    await log_activity(db, workspace_id, user.id, "comment_deleted", "task", task_id,
                       {"comment_id": comment_id})
    await db.commit()
    return {"status": "deleted", "comment_id": comment_id}
