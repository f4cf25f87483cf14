# tests/test_me.py — Profile, preferences, my tasks and data export
import csv
import io
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Task, TaskAssignment, TaskPriority, TaskStatus, User, Workspace
from routers import me
from tests.conftest import TEST_PASSWORD, add_member, get_auth_headers

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def _assigned_task(db_session, workspace, user, **fields):
    task = Task(workspace_id=workspace.id, created_by=user.id, **fields)
    db_session.add(task)
    await db_session.flush()
    db_session.add(TaskAssignment(task_id=task.id, user_id=user.id))
    await db_session.commit()
    return task


@pytest.mark.asyncio
class TestProfile:
    async def test_get_profile(self, client: AsyncClient, test_user):
        res = await client.get("/api/v1/me", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        data = res.json()
        assert data["email"] == test_user.email
        assert data["language"] == "en"
        assert data["timezone"] == "UTC"
        assert data["email_notifications_enabled"] is True
        assert data["email_digest_mode"] == "immediate"

    async def test_update_profile(self, client: AsyncClient, test_user):
        res = await client.patch("/api/v1/me", json={"first_name": " Ada ", "last_name": "Lovelace"},
                                 headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.json()["name"] == "Ada Lovelace"
        assert res.json()["first_name"] == "Ada"

    async def test_name_length_validated(self, client: AsyncClient, test_user):
        res = await client.patch("/api/v1/me", json={"first_name": "A", "last_name": "Lovelace"},
                                 headers=get_auth_headers(test_user))
        assert res.status_code == 422

    async def test_preferences(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        res = await client.patch("/api/v1/me/preferences", json={"language": "fr", "timezone": "Europe/Paris"},
                                 headers=headers)
        assert res.json() == {"language": "fr", "timezone": "Europe/Paris"}

        assert (await client.patch("/api/v1/me/preferences", json={"language": "xx"},
                                   headers=headers)).status_code == 422
        assert (await client.patch("/api/v1/me/preferences", json={"timezone": "Mars/Olympus"},
                                   headers=headers)).status_code == 422
        empty = await client.patch("/api/v1/me/preferences", json={}, headers=headers)
        assert empty.status_code == 400

    async def test_notifications(self, client: AsyncClient, test_user):
        res = await client.patch("/api/v1/me/notifications", json={
            "email_notifications_enabled": False,
            "email_digest_mode": "daily_digest",
        }, headers=get_auth_headers(test_user))
        assert res.json() == {"email_notifications_enabled": False, "email_digest_mode": "daily_digest"}


@pytest.mark.asyncio
class TestAvatar:
    async def test_upload_and_delete(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        res = await client.post("/api/v1/me/avatar", files={"file": ("me.png", PNG_BYTES, "image/png")},
                                headers=headers)
        assert res.status_code == 200
        url = res.json()["avatar_url"]
        assert url.startswith("/uploads/avatars/") and url.endswith(".png")
        stored = me.AVATAR_DIR / url.rsplit("/", 1)[-1]
        assert stored.read_bytes() == PNG_BYTES

        res = await client.delete("/api/v1/me/avatar", headers=headers)
        assert res.json() == {"avatar_url": None}
        assert not stored.exists()

    async def test_rejects_non_images(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/me/avatar", files={"file": ("notes.txt", b"hello", "text/plain")},
                                headers=get_auth_headers(test_user))
        assert res.status_code == 400

    async def test_rejects_oversized(self, client: AsyncClient, test_user, monkeypatch):
        monkeypatch.setattr(me, "AVATAR_MAX_BYTES", 10)
        res = await client.post("/api/v1/me/avatar", files={"file": ("big.png", PNG_BYTES, "image/png")},
                                headers=get_auth_headers(test_user))
        assert res.status_code == 400
        assert res.json()["detail"] == "Avatar must be 5 MB or smaller"


@pytest.mark.asyncio
class TestPasswordAndAccount:
    async def test_change_password(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        wrong = await client.post("/api/v1/me/password", json={
            "current_password": "Nope12345", "new_password": "Another123",
        }, headers=headers)
        assert wrong.status_code == 400

        res = await client.post("/api/v1/me/password", json={
            "current_password": TEST_PASSWORD, "new_password": "Another123",
        }, headers=headers)
        assert res.status_code == 200
        login = await client.post("/api/v1/auth/login", json={"email": test_user.email, "password": "Another123"})
        assert login.status_code == 200

    async def test_delete_account_removes_solo_workspace(self, client: AsyncClient, db_session,
                                                        test_user, workspace):
        res = await client.request("DELETE", "/api/v1/me/account", json={"password": TEST_PASSWORD},
                                   headers=get_auth_headers(test_user))
        assert res.status_code == 200

        row = (await db_session.execute(
            select(User.email, User.is_active, User.deleted_at, User.name).where(User.id == test_user.id)
        )).one()
        assert row.email.startswith("deleted-")
        assert row.is_active is False
        assert row.deleted_at is not None
        assert row.name == "Deleted User"
        assert (await db_session.execute(select(Workspace.id))).first() is None

        login = await client.post("/api/v1/auth/login", json={"email": "testuser@todoria.dev",
                                                              "password": TEST_PASSWORD})
        assert login.status_code == 401

    async def test_delete_account_blocked_by_shared_workspace(self, client: AsyncClient, db_session,
                                                             test_user, second_user, workspace):
        await add_member(db_session, workspace, second_user)
        res = await client.request("DELETE", "/api/v1/me/account", json={"password": TEST_PASSWORD},
                                   headers=get_auth_headers(test_user))
        assert res.status_code == 400
        assert "Test Workspace" in res.json()["detail"]

    async def test_delete_account_wrong_password(self, client: AsyncClient, test_user):
        res = await client.request("DELETE", "/api/v1/me/account", json={"password": "Wrong12345"},
                                   headers=get_auth_headers(test_user))
        assert res.status_code == 400


@pytest.mark.asyncio
class TestMyTasks:
    async def test_sorting_and_status(self, client: AsyncClient, db_session, test_user, workspace):
        await _assigned_task(db_session, workspace, test_user, title="Later", due_date=date(2031, 1, 1),
                             priority=TaskPriority.LOW, position=0)
        await _assigned_task(db_session, workspace, test_user, title="Sooner", due_date=date(2030, 1, 1),
                             priority=TaskPriority.URGENT, position=1)
        await _assigned_task(db_session, workspace, test_user, title="Someday", position=2)
        await _assigned_task(db_session, workspace, test_user, title="Done", status=TaskStatus.COMPLETED,
                             due_date=date(2029, 1, 1), position=3)
        db_session.add(Task(workspace_id=workspace.id, title="Unassigned", position=4))
        await db_session.commit()
        headers = get_auth_headers(test_user)

        async def titles(**params):
            res = await client.get("/api/v1/me/tasks", params=params, headers=headers)
            assert res.status_code == 200
            return [t["title"] for t in res.json()["tasks"]]

        assert await titles() == ["Done", "Sooner", "Later", "Someday"]
        assert await titles(order="desc") == ["Later", "Sooner", "Done", "Someday"]
        assert await titles(status="open") == ["Sooner", "Later", "Someday"]
        assert await titles(status="completed") == ["Done"]
        assert (await titles(sort="priority", order="desc"))[0] == "Sooner"

    async def test_invalid_sort(self, client: AsyncClient, test_user):
        res = await client.get("/api/v1/me/tasks", params={"sort": "owner"}, headers=get_auth_headers(test_user))
        assert res.status_code == 422

    async def test_csv_export_neutralises_formulas(self, client: AsyncClient, db_session, test_user, workspace):
        await _assigned_task(db_session, workspace, test_user, title="=HYPERLINK(\"http://evil\")",
                             description="+1 for this", due_date=date(2030, 3, 1))
        res = await client.get("/api/v1/me/tasks/export", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert "attachment" in res.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(res.text)))
        assert rows[0] == me.CSV_HEADERS
        assert rows[1][0] == "'=HYPERLINK(\"http://evil\")"
        assert rows[1][1] == "'+1 for this"
        assert rows[1][4] == "2030-03-01"
        assert rows[1][6] == "Test Workspace"

    async def test_data_export(self, client: AsyncClient, db_session, test_user, workspace):
        await _assigned_task(db_session, workspace, test_user, title="Mine")
        res = await client.get("/api/v1/me/export", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        data = res.json()
        assert data["profile"]["id"] == test_user.id
        assert data["workspaces"][0]["workspace_name"] == "Test Workspace"
        assert data["workspaces"][0]["role"] == "admin"
        assert [t["title"] for t in data["tasks_created"]] == ["Mine"]
        assert [t["title"] for t in data["tasks_assigned"]] == ["Mine"]


def test_csv_cell():
    """Spreadsheet formula prefixes get a leading quote"""
    assert me.csv_cell(None) == ""
    assert me.csv_cell("plain") == "plain"
    assert me.csv_cell("-5") == "'-5"
    assert me.csv_cell("@SUM(A1)") == "'@SUM(A1)"
