# tests/test_activity.py — Workspace activity feed
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


async def _feed(client, user, workspace, **params):
    return await client.get("/api/v1/activity", params={"workspace_id": workspace.id, **params},
                            headers=get_auth_headers(user))


@pytest.mark.asyncio
async def test_task_lifecycle_is_recorded(client: AsyncClient, test_user, workspace, category):
    headers = get_auth_headers(test_user)
    task = (await client.post("/api/v1/tasks", json={
        "workspace_id": workspace.id, "category_id": category.id, "title": "Write docs",
    }, headers=headers)).json()
    await client.put(f"/api/v1/tasks/{task['id']}", json={"status": "completed"}, headers=headers)

    res = await _feed(client, test_user, workspace)
    assert res.status_code == 200
    data = res.json()
    assert data["count"] == len(data["activity"])
    entries = [(a["action"], a["entity_type"]) for a in data["activity"]]
    assert ("created", "task") in entries
    assert ("completed", "task") in entries

    created = next(a for a in data["activity"] if a["action"] == "created" and a["entity_type"] == "task")
    assert created["entity_id"] == task["id"]
    assert created["user_name"] == "Test User"
    assert created["details"]["title"] == "Write docs"


@pytest.mark.asyncio
async def test_entity_type_filter(client: AsyncClient, test_user, workspace):
    headers = get_auth_headers(test_user)
    await client.post("/api/v1/categories", json={"workspace_id": workspace.id, "name": "Ideas"}, headers=headers)
    await client.post("/api/v1/tasks", json={"workspace_id": workspace.id, "title": "Loose task"}, headers=headers)

    res = await _feed(client, test_user, workspace, entity_type="category")
    assert [(a["action"], a["details"]["name"]) for a in res.json()["activity"]] == [("created", "Ideas")]


@pytest.mark.asyncio
async def test_limit(client: AsyncClient, test_user, workspace):
    headers = get_auth_headers(test_user)
    for i in range(3):
        await client.post("/api/v1/tasks", json={"workspace_id": workspace.id, "title": f"T{i}"}, headers=headers)
    res = await _feed(client, test_user, workspace, limit=2)
    assert res.json()["count"] == 2


@pytest.mark.asyncio
async def test_members_only(client: AsyncClient, second_user, workspace):
    res = await _feed(client, second_user, workspace)
    assert res.status_code == 403
