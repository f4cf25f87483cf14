# routers/categories.py — Task categories (board columns) per workspace
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from activity import log_activity
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Category, Task, WorkspaceMember
from plan_limits import require_active_subscription
from workspace_access import ensure_editor, require_workspace_member

router = APIRouter(prefix="/api/v1/categories", tags=["Categories"])

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"
DEFAULT_COLOR = "#3B82F6"


# --- Schemas ---

class CategoryOut(BaseModel):
    id: str
    workspace_id: str
    name: str
    color: str
    position: int
    task_count: int = 0
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CategoryCreate(BaseModel):
    workspace_id: str
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(DEFAULT_COLOR, pattern=HEX_COLOR)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)


class CategoryReorder(BaseModel):
    workspace_id: str
    category_ids: List[str] = Field(..., min_length=1)


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


async def _task_counts(workspace_id: str, db: AsyncSession) -> dict:
    stmt = (
        select(Task.category_id, func.count(Task.id))
        .where(Task.workspace_id == workspace_id, Task.category_id.is_not(None))
        .group_by(Task.category_id)
    )
    return {cat_id: count for cat_id, count in (await db.execute(stmt)).all()}


def _category_to_out(cat: Category, task_count: int = 0) -> CategoryOut:
    return CategoryOut(
        id=cat.id,
        workspace_id=cat.workspace_id,
        name=cat.name,
        color=cat.color,
        position=cat.position or 0,
        task_count=task_count,
        created_by=cat.created_by,
        created_at=_ts(cat.created_at),
        updated_at=_ts(cat.updated_at),
    )


async def _ordered_categories(workspace_id: str, db: AsyncSession) -> List[CategoryOut]:
    stmt = (
        select(Category)
        .where(Category.workspace_id == workspace_id)
        .order_by(Category.position.asc(), Category.created_at.asc())
    )
    categories = (await db.execute(stmt)).scalars().all()
    counts = await _task_counts(workspace_id, db)
    return [_category_to_out(c, counts.get(c.id, 0)) for c in categories]


async def _name_taken(workspace_id: str, name: str, db: AsyncSession, exclude_id: str = None) -> bool:
    stmt = select(Category.id).where(
        Category.workspace_id == workspace_id,
        func.lower(Category.name) == name.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Category.id != exclude_id)
    return (await db.execute(stmt)).first() is not None


async def _get_category(category_id: str, db: AsyncSession) -> Category:
    cat = await db.get(Category, category_id)
    if not cat:
        raise HTTPException(status_code=404, detail="Category not found")
    return cat


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("", response_model=List[CategoryOut])
async def list_categories(
    membership: WorkspaceMember = Depends(require_workspace_member),
    db: AsyncSession = Depends(get_db_session),
):
    return await _ordered_categories(membership.workspace_id, db)


@router.post("", response_model=CategoryOut, status_code=201)
async def create_category(
    data: CategoryCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await ensure_editor(data.workspace_id, user, db)
    await require_active_subscription(data.workspace_id, db)

    name = data.name.strip()
    if await _name_taken(data.workspace_id, name, db):
        raise HTTPException(status_code=400, detail="A category with this name already exists")

    max_pos = (await db.execute(
        select(func.max(Category.position)).where(Category.workspace_id == data.workspace_id)
    )).scalar()

    cat = Category(
        workspace_id=data.workspace_id,
        name=name,
        color=data.color,
        position=0 if max_pos is None else max_pos + 1,
        created_by=user.id,
    )
    db.add(cat)
    await db.flush()
    await log_activity(db, data.workspace_id, user.id, "created", "category", cat.id, {"name": name})
    await db.commit()
    await db.refresh(cat)
    return _category_to_out(cat)


# Declared before /{category_id} so "reorder" is not captured as an id
@router.patch("/reorder", response_model=List[CategoryOut])
async def reorder_categories(
    data: CategoryReorder,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Position of each category becomes its index in category_ids"""
    await ensure_editor(data.workspace_id, user, db)
    await require_active_subscription(data.workspace_id, db)

    stmt = select(Category).where(Category.workspace_id == data.workspace_id)
    by_id = {c.id: c for c in (await db.execute(stmt)).scalars().all()}
    if any(cid not in by_id for cid in data.category_ids):
        raise HTTPException(status_code=400, detail="Category list contains ids outside this workspace")
    if len(data.category_ids) != len(by_id) or set(data.category_ids) != set(by_id):
        raise HTTPException(
            status_code=400,
            detail="category_ids must list every category in the workspace exactly once",
        )

    for index, cat_id in enumerate(data.category_ids):
        by_id[cat_id].position = index

    await log_activity(db, data.workspace_id, user.id, "reordered", "category", None,
                       {"category_ids": data.category_ids})
    await db.commit()
    return await _ordered_categories(data.workspace_id, db)


@router.patch("/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    cat = await _get_category(category_id, db)
    await ensure_editor(cat.workspace_id, user, db)
    await require_active_subscription(cat.workspace_id, db)

    changes = {}
    if data.name is not None:
        name = data.name.strip()
        if await _name_taken(cat.workspace_id, name, db, exclude_id=cat.id):
            raise HTTPException(status_code=400, detail="A category with this name already exists")
        changes["name"] = name
        cat.name = name
    if data.color is not None:
        changes["color"] = data.color
        cat.color = data.color

    if changes:
        await log_activity(db, cat.workspace_id, user.id, "updated", "category", cat.id, changes)
    await db.commit()
    await db.refresh(cat)

    counts = await _task_counts(cat.workspace_id, db)
    return _category_to_out(cat, counts.get(cat.id, 0))


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Only empty categories can be deleted; remaining positions are compacted"""
    cat = await _get_category(category_id, db)
    await ensure_editor(cat.workspace_id, user, db)
    await require_active_subscription(cat.workspace_id, db)

    task_count = (await db.execute(
        select(func.count(Task.id)).where(Task.category_id == category_id)
    )).scalar() or 0
    if task_count:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete category with {task_count} task(s). Move or delete them first.",
        )

    workspace_id, position, name = cat.workspace_id, cat.position, cat.name
    await db.execute(delete(Category).where(Category.id == category_id))
    await db.execute(
        update(Category)
        .where(Category.workspace_id == workspace_id, Category.position > position)
        .values(position=Category.position - 1)
    )
    await log_activity(db, workspace_id, user.id, "deleted", "category", category_id, {"name": name})
    await db.commit()
    return {"status": "deleted", "category_id": category_id}
