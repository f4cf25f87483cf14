# tests/test_categories.py — Category (board column) tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Category, Subscription, SubscriptionStatus, Task, WorkspaceRole
from tests.conftest import add_member, get_auth_headers


async def _create(client, user, workspace, name, color=None):
    body = {"workspace_id": workspace.id, "name": name}
    if color:
        body["color"] = color
    return await client.post("/api/v1/categories", json=body, headers=get_auth_headers(user))


@pytest.mark.asyncio
async def test_create_appends_position(client: AsyncClient, test_user, workspace):
    """New categories go to the end"""
    first = await _create(client, test_user, workspace, "Backlog")
    second = await _create(client, test_user, workspace, "Doing", "#10B981")
    assert first.status_code == 201
    assert first.json()["position"] == 0
    assert first.json()["color"] == "#3B82F6"
    assert second.json()["position"] == 1
    assert second.json()["color"] == "#10B981"


@pytest.mark.asyncio
async def test_duplicate_name_is_case_insensitive(client: AsyncClient, test_user, workspace, category):
    res = await _create(client, test_user, workspace, "to do")
    assert res.status_code == 400
    assert res.json()["detail"] == "A category with this name already exists"


@pytest.mark.asyncio
async def test_invalid_color(client: AsyncClient, test_user, workspace):
    res = await _create(client, test_user, workspace, "Bad", "blue")
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_list_includes_task_counts(client: AsyncClient, db_session, test_user, workspace, category):
    db_session.add_all([
        Task(workspace_id=workspace.id, category_id=category.id, title="One", position=0),
        Task(workspace_id=workspace.id, category_id=category.id, title="Two", position=1),
    ])
    await db_session.commit()
    await _create(client, test_user, workspace, "Empty")

    res = await client.get("/api/v1/categories", params={"workspace_id": workspace.id},
                           headers=get_auth_headers(test_user))
    assert res.status_code == 200
    assert [(c["name"], c["task_count"]) for c in res.json()] == [("To Do", 2), ("Empty", 0)]


@pytest.mark.asyncio
async def test_viewer_cannot_create(client: AsyncClient, db_session, second_user, workspace):
    await add_member(db_session, workspace, second_user, WorkspaceRole.VIEWER)
    res = await _create(client, second_user, workspace, "Nope")
    assert res.status_code == 403
    assert res.json()["detail"] == "Viewers cannot modify workspace content"


@pytest.mark.asyncio
async def test_update_category(client: AsyncClient, test_user, workspace, category):
    res = await client.patch(f"/api/v1/categories/{category.id}", json={"name": "Later", "color": "#000000"},
                             headers=get_auth_headers(test_user))
    assert res.status_code == 200
    assert res.json()["name"] == "Later"
    assert res.json()["color"] == "#000000"


@pytest.mark.asyncio
async def test_reorder(client: AsyncClient, test_user, workspace, category):
    b = (await _create(client, test_user, workspace, "B")).json()
    c = (await _create(client, test_user, workspace, "C")).json()

    res = await client.patch("/api/v1/categories/reorder", json={
        "workspace_id": workspace.id,
        "category_ids": [c["id"], category.id, b["id"]],
    }, headers=get_auth_headers(test_user))
    assert res.status_code == 200
    assert [(x["name"], x["position"]) for x in res.json()] == [("C", 0), ("To Do", 1), ("B", 2)]


@pytest.mark.asyncio
async def test_reorder_rejects_foreign_ids(client: AsyncClient, test_user, workspace, category):
    res = await client.patch("/api/v1/categories/reorder", json={
        "workspace_id": workspace.id,
        "category_ids": [category.id, "someone-elses"],
    }, headers=get_auth_headers(test_user))
    assert res.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("ids", ["partial", "duplicated"])
async def test_reorder_requires_every_category_once(client: AsyncClient, db_session, test_user, workspace,
                                                    category, ids):
    other = (await _create(client, test_user, workspace, "Other")).json()
    category_ids = [other["id"]] if ids == "partial" else [other["id"], other["id"], category.id]

    res = await client.patch("/api/v1/categories/reorder", json={
        "workspace_id": workspace.id,
        "category_ids": category_ids,
    }, headers=get_auth_headers(test_user))
    assert res.status_code == 400

    rows = (await db_session.execute(
        select(Category.name, Category.position).order_by(Category.position)
    )).all()
    assert [tuple(r) for r in rows] == [("To Do", 0), ("Other", 1)]


@pytest.mark.asyncio
async def test_reorder_blocked_for_canceled_subscription(client: AsyncClient, db_session, test_user,
                                                         workspace, category):
    db_session.add(Subscription(workspace_id=workspace.id, plan_id="pro", status=SubscriptionStatus.CANCELED))
    await db_session.commit()
    res = await client.patch("/api/v1/categories/reorder", json={
        "workspace_id": workspace.id,
        "category_ids": [category.id],
    }, headers=get_auth_headers(test_user))
    assert res.status_code == 402
    assert res.json()["detail"]["code"] == "SUBSCRIPTION_CANCELED"


@pytest.mark.asyncio
async def test_delete_compacts_positions(client: AsyncClient, db_session, test_user, workspace, category):
    b = (await _create(client, test_user, workspace, "B")).json()
    await _create(client, test_user, workspace, "C")

    res = await client.delete(f"/api/v1/categories/{b['id']}", headers=get_auth_headers(test_user))
    assert res.status_code == 200
    assert res.json() == {"status": "deleted", "category_id": b["id"]}

    rows = (await db_session.execute(
        select(Category.name, Category.position).order_by(Category.position)
    )).all()
    assert [tuple(r) for r in rows] == [("To Do", 0), ("C", 1)]


@pytest.mark.asyncio
async def test_cannot_delete_category_with_tasks(client: AsyncClient, db_session, test_user, workspace, category):
    db_session.add(Task(workspace_id=workspace.id, category_id=category.id, title="Blocker"))
    await db_session.commit()
    res = await client.delete(f"/api/v1/categories/{category.id}", headers=get_auth_headers(test_user))
    assert res.status_code == 400
    assert res.json()["detail"] == "Cannot delete category with 1 task(s). Move or delete them first."


@pytest.mark.asyncio
async def test_canceled_subscription_blocks_mutations(client: AsyncClient, db_session, test_user, workspace):
    db_session.add(Subscription(workspace_id=workspace.id, plan_id="pro", status=SubscriptionStatus.CANCELED))
    await db_session.commit()
    res = await _create(client, test_user, workspace, "Blocked")
    assert res.status_code == 402
    assert res.json()["detail"]["code"] == "SUBSCRIPTION_CANCELED"
