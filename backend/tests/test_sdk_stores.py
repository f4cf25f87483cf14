# tests/test_sdk_stores.py — Optimistic SDK stores against a mocked API
import asyncio
import json

import httpx
import pytest

from sdk.api import ApiClient, ApiError, _clean_params
from sdk.stores import CategoryStore, Notifier, TaskStore, UserDirectory, WorkspaceContext


def _json(request: httpx.Request) -> dict:
    return json.loads(request.content) if request.content else {}


def _stores(handler, workspace_id="ws1", users=None):
    api = ApiClient(base_url="http://api.test", token="tok", transport=httpx.MockTransport(handler))
    notifier = Notifier()
    ctx = WorkspaceContext(workspace_id)
    return (
        TaskStore(api, ctx, UserDirectory(users), notifier),
        CategoryStore(api, ctx, notifier),
        notifier,
    )


def test_clean_params():
    assert _clean_params({
        "workspace_id": "ws1", "status": None, "search": "", "assignee_ids": [], "priority": "high",
    }) == {"workspace_id": "ws1", "priority": "high"}
    assert _clean_params({"assignee_ids": ["u1", "u2"]}) == {"assignee_ids": "u1,u2"}


def test_api_error_message():
    assert ApiError(400, "Nope").message == "Nope"
    assert ApiError(403, {"code": "PLAN_LIMIT_TASKS", "message": "Upgrade"}).message == "Upgrade"
    assert ApiError(422, [{"loc": ["body"]}]).message is None
    assert ApiError(0).message is None


@pytest.mark.asyncio
class TestFetch:
    async def test_no_workspace(self):
        store, _, _ = _stores(lambda r: httpx.Response(200, json={}), workspace_id=None)
        assert await store.fetch_tasks() == {"success": False, "error": "No workspace selected"}

    async def test_fetch_sends_token_and_filters(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={
                "tasks": [{"id": "t1", "title": "A"}], "next_cursor": "abc", "has_more": True,
            })

        store, _, _ = _stores(handler)
        result = await store.fetch_tasks({"status": "todo", "assignee_ids": ["u1", "u2"]})
        assert result["success"] is True
        assert seen["auth"] == "Bearer tok"
        assert seen["params"] == {"workspace_id": "ws1", "status": "todo", "assignee_ids": "u1,u2"}
        assert store.next_cursor == "abc"
        assert store.has_more is True
        assert store.is_loading is False

    async def test_fetch_error_uses_server_message(self):
        store, _, notifier = _stores(lambda r: httpx.Response(403, json={"detail": "Not a member"}))
        result = await store.fetch_tasks()
        assert result == {"success": False, "error": "Not a member"}
        assert store.error == "Not a member"
        assert notifier.errors == ["Not a member"]

    async def test_fetch_error_fallback(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        store, _, _ = _stores(handler)
        result = await store.fetch_tasks()
        assert result["error"] == "Failed to fetch tasks"

    async def test_load_more_appends(self):
        def handler(request):
            if request.url.params.get("cursor") == "abc":
                return httpx.Response(200, json={"tasks": [{"id": "t2"}], "has_more": False})
            return httpx.Response(200, json={"tasks": [{"id": "t1"}], "next_cursor": "abc", "has_more": True})

        store, _, _ = _stores(handler)
        await store.fetch_tasks()
        assert await store.load_more_tasks() == {"success": True}
        assert [t["id"] for t in store.tasks] == ["t1", "t2"]
        assert await store.load_more_tasks() == {"success": False}


@pytest.mark.asyncio
class TestTaskMutations:
    async def test_create_without_workspace(self):
        store, _, notifier = _stores(lambda r: httpx.Response(201, json={}), workspace_id=None)
        assert (await store.create_task({"title": "X"}))["success"] is False
        assert notifier.errors == ["No workspace selected"]

    async def test_create_adds_workspace(self):
        def handler(request):
            body = _json(request)
            return httpx.Response(201, json={"id": "t9", **body})

        store, _, notifier = _stores(handler)
        result = await store.create_task({"title": "Write"})
        assert result["task"]["workspace_id"] == "ws1"
        assert store.tasks == [result["task"]]
        assert notifier.successes == ['Created "Write"']

    async def test_update_plan_limit_message(self):
        store, _, _ = _stores(lambda r: httpx.Response(403, json={"detail": {
            "code": "PLAN_LIMIT_TASKS", "message": "Upgrade to Pro for unlimited tasks.",
        }}))
        store.tasks = [{"id": "t1", "title": "A", "priority": "low"}]
        result = await store.update_task("t1", {"priority": "high"})
        assert result["error"] == "Upgrade to Pro for unlimited tasks."
        assert store.tasks[0]["priority"] == "low"

    async def test_optimistic_assignees(self):
        users = [{"id": "u1", "name": "Ada"}]
        store, _, _ = _stores(lambda r: httpx.Response(200, json={}), users=users)
        fields = store.optimistic_fields({"assignee_ids": ["u1", "u2"], "title": "T"})
        assert fields == {"title": "T", "assignees": [{"id": "u1", "name": "Ada"}, {"id": "u2", "name": "Unknown"}]}

    async def test_stale_failure_does_not_roll_back_newer_update(self):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            body = _json(request)
            if body["priority"] == "high":
                entered.set()
                await release.wait()
                return httpx.Response(500, json={"detail": "boom"})
            return httpx.Response(200, json={"id": "t1", "title": "A", "priority": body["priority"]})

        store, _, _ = _stores(handler)
        store.tasks = [{"id": "t1", "title": "A", "priority": "low"}]

        slow = asyncio.ensure_future(store.update_task("t1", {"priority": "high"}))
        await entered.wait()
        newer = await store.update_task("t1", {"priority": "urgent"})
        assert newer["success"] is True

        release.set()
        stale = await slow
        assert stale == {"success": False, "error": "boom"}
        assert store.tasks[0]["priority"] == "urgent"

    async def test_stale_success_is_not_applied(self):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            body = _json(request)
            if body["title"] == "First":
                entered.set()
                await release.wait()
            return httpx.Response(200, json={"id": "t1", "title": body["title"]})

        store, _, _ = _stores(handler)
        store.tasks = [{"id": "t1", "title": "A"}]
        slow = asyncio.ensure_future(store.update_task("t1", {"title": "First"}))
        await entered.wait()
        await store.update_task("t1", {"title": "Second"})
        release.set()
        assert (await slow)["success"] is True
        assert store.tasks[0]["title"] == "Second"

    async def test_position_update_refetches(self):
        server_tasks = [
            {"id": "t2", "category_id": "c1", "position": 0},
            {"id": "t1", "category_id": "c1", "position": 1},
        ]

        def handler(request):
            if request.method == "PATCH":
                assert _json(request) == {"category_id": "c1", "position": 1}
                return httpx.Response(200, json={"id": "t1"})
            return httpx.Response(200, json={"tasks": server_tasks, "has_more": False})

        store, _, _ = _stores(handler)
        store.tasks = [
            {"id": "t1", "category_id": "c1", "position": 0},
            {"id": "t2", "category_id": "c1", "position": 1},
        ]
        assert await store.update_task_position("t1", "c1", 1) == {"success": True}
        assert [(t["id"], t["position"]) for t in store.tasks] == [("t2", 0), ("t1", 1)]
        await store.wait_background()
        assert store.tasks == server_tasks

    async def test_position_failure_rolls_back(self):
        store, _, notifier = _stores(lambda r: httpx.Response(500))
        original = [
            {"id": "t1", "category_id": "c1", "position": 0},
            {"id": "t2", "category_id": "c2", "position": 0},
        ]
        store.tasks = [dict(t) for t in original]
        result = await store.update_task_position("t1", "c2", 0)
        assert result == {"success": False, "error": "Failed to update position"}
        assert store.tasks == original
        assert notifier.errors == ["Failed to update position"]

    async def test_delete(self):
        store, _, notifier = _stores(lambda r: httpx.Response(200, json={"status": "deleted"}))
        store.tasks = [{"id": "t1", "title": "Gone"}, {"id": "t2", "title": "Stays"}]
        assert (await store.delete_task("t1"))["success"] is True
        assert [t["id"] for t in store.tasks] == ["t2"]
        assert notifier.successes == ['Deleted "Gone"']

    async def test_delete_failure_restores(self):
        store, _, _ = _stores(lambda r: httpx.Response(404, json={"detail": "Task not found"}))
        store.tasks = [{"id": "t1", "title": "Gone"}]
        assert (await store.delete_task("t1"))["error"] == "Task not found"
        assert store.tasks == [{"id": "t1", "title": "Gone"}]

    async def test_toggle_complete_moves_between_columns(self):
        sent = []

        def handler(request):
            body = _json(request)
            sent.append(body)
            return httpx.Response(200, json={"id": "t1", "title": "A", **body})

        categories = [{"id": "todo", "name": "To Do"}, {"id": "done", "name": "Completed"}]
        store, _, notifier = _stores(handler)
        task = {"id": "t1", "title": "A", "status": "todo", "category_id": "todo"}
        store.tasks = [task]

        await store.toggle_complete(task, categories)
        assert sent[-1] == {"status": "completed", "category_id": "done"}
        assert store.tasks[0]["status"] == "completed"

        await store.toggle_complete(store.tasks[0], categories)
        assert sent[-1] == {"status": "todo", "category_id": "todo"}
        assert store.tasks[0]["completed_at"] is None
        assert notifier.successes == ['Marked "A" as completed', 'Marked "A" as incomplete']


@pytest.mark.asyncio
class TestCategoryStore:
    async def test_fetch_and_create(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(201, json={"id": "c2", "name": _json(request)["name"]})
            return httpx.Response(200, json=[{"id": "c1", "name": "To Do"}])

        _, store, notifier = _stores(handler)
        assert (await store.fetch_categories())["success"] is True
        await store.create_category({"name": "Doing"})
        assert [c["id"] for c in store.categories] == ["c1", "c2"]
        assert notifier.successes == ['Category "Doing" created']

    async def test_reorder_failure_restores(self):
        _, store, notifier = _stores(lambda r: httpx.Response(400, json={
            "detail": "category_ids must list every category in the workspace exactly once",
        }))
        store.categories = [{"id": "a", "position": 0}, {"id": "b", "position": 1}]
        result = await store.reorder_categories(["b", "a"])
        assert result["success"] is False
        assert store.categories == [{"id": "a", "position": 0}, {"id": "b", "position": 1}]
        assert notifier.errors == [result["error"]]

    async def test_reorder_uses_server_order(self):
        server = [{"id": "b", "position": 0}, {"id": "a", "position": 1}]
        _, store, _ = _stores(lambda r: httpx.Response(200, json=server))
        store.categories = [{"id": "a", "position": 0}, {"id": "b", "position": 1}]
        assert await store.reorder_categories(["b", "a"]) == {"success": True}
        assert store.categories == server

    async def test_delete_keeps_category_on_error(self):
        _, store, notifier = _stores(lambda r: httpx.Response(400, json={
            "detail": "Cannot delete category with 2 task(s). Move or delete them first.",
        }))
        store.categories = [{"id": "c1", "name": "To Do"}]
        result = await store.delete_category("c1")
        assert result["success"] is False
        assert store.categories == [{"id": "c1", "name": "To Do"}]
        assert notifier.errors == ["Cannot delete category with 2 task(s). Move or delete them first."]
