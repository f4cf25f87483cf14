# tests/test_auth.py — Authentication & authorization tests
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import EmailQueue, User
from tests.conftest import TEST_PASSWORD, get_auth_headers


async def _queued(db_session, template: str) -> list:
    result = await db_session.execute(select(EmailQueue).where(EmailQueue.template == template))
    return result.scalars().all()


def _token_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_success(self, client: AsyncClient, db_session):
        res = await client.post("/api/v1/auth/register", json={
            "email": "NewUser@Test.com",
            "password": "SecurePass123",
            "name": "New User",
            "tos_accepted": True,
        })
        assert res.status_code == 201
        data = res.json()
        assert "access_token" in data
        assert "refresh_token" in data
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == "newuser@test.com"
        assert data["user"]["first_name"] == "New"
        assert data["user"]["last_name"] == "User"
        assert data["user"]["role"] == "member"
        assert data["user"]["email_verified"] is False

        verification = await _queued(db_session, "email_verification.html")
        assert len(verification) == 1
        assert verification[0].to_email == "newuser@test.com"
        assert verification[0].template_data["verification_url"].startswith(
            "http://client.test/verify-email?token="
        )
        assert len(await _queued(db_session, "welcome.html")) == 1

    async def test_register_requires_tos(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            "email": "notos@test.com",
            "password": "SecurePass123",
            "name": "No Tos",
        })
        assert res.status_code == 400
        assert res.json()["detail"] == "You must accept the Terms of Service"

    async def test_register_weak_password(self, client: AsyncClient):
        for password in ("short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"):
            res = await client.post("/api/v1/auth/register", json={
                "email": "weak@test.com",
                "password": password,
                "name": "Weak",
                "tos_accepted": True,
            })
            assert res.status_code == 422, password

    async def test_register_duplicate_email(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/register", json={
            "email": "TESTUSER@todoria.dev",
            "password": "SecurePass123",
            "name": "Dupe",
            "tos_accepted": True,
        })
        assert res.status_code == 409
        assert res.json()["detail"] == "An account with this email already exists"

    async def test_register_invalid_email(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            "email": "not-an-email",
            "password": "SecurePass123",
            "name": "Bad Email",
            "tos_accepted": True,
        })
        assert res.status_code == 422


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, test_user, db_session):
        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev",
            "password": TEST_PASSWORD,
        })
        assert res.status_code == 200
        data = res.json()
        assert "access_token" in data
        assert data["user"]["email"] == "testuser@todoria.dev"

        last_login = (await db_session.execute(
            select(User.last_login_at).where(User.id == test_user.id)
        )).scalar()
        assert last_login is not None

    async def test_login_wrong_password(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev",
            "password": "WrongPassword123",
        })
        assert res.status_code == 401
        assert res.json()["detail"] == "Invalid email or password"

    async def test_login_nonexistent_user(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/login", json={
            "email": "nobody@test.com",
            "password": "SomePassword123",
        })
        assert res.status_code == 401

    async def test_login_lockout_after_repeated_failures(self, client: AsyncClient, test_user):
        for _ in range(5):
            res = await client.post("/api/v1/auth/login", json={
                "email": "testuser@todoria.dev",
                "password": "WrongPassword123",
            })
            assert res.status_code == 401
        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev",
            "password": TEST_PASSWORD,
        })
        assert res.status_code == 429


@pytest.mark.asyncio
class TestTokens:
    async def test_access_protected_route(self, client: AsyncClient, test_user):
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.json()["id"] == test_user.id

    async def test_missing_token_rejected(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me")
        assert res.status_code in (401, 403)

    async def test_garbage_token_rejected(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    async def test_refresh_issues_new_tokens(self, client: AsyncClient, test_user):
        login = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev",
            "password": TEST_PASSWORD,
        })
        res = await client.post("/api/v1/auth/refresh", json={
            "refresh_token": login.json()["refresh_token"],
        })
        assert res.status_code == 200
        assert res.json()["user"]["id"] == test_user.id

    async def test_refresh_rejects_access_token(self, client: AsyncClient, test_user):
        login = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev",
            "password": TEST_PASSWORD,
        })
        res = await client.post("/api/v1/auth/refresh", json={
            "refresh_token": login.json()["access_token"],
        })
        assert res.status_code == 401

    async def test_logout_revokes_token(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        res = await client.post("/api/v1/auth/logout", headers=headers)
        assert res.status_code == 200
        assert res.json()["status"] == "logged_out"

        res = await client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401
        assert res.json()["detail"] == "Token has been revoked"


@pytest.mark.asyncio
class TestEmailVerification:
    async def test_verify_email_with_emailed_token(self, client: AsyncClient, db_session):
        reg = await client.post("/api/v1/auth/register", json={
            "email": "verify@test.com",
            "password": "SecurePass123",
            "name": "Verify Me",
            "tos_accepted": True,
        })
        assert reg.status_code == 201
        entry = (await _queued(db_session, "email_verification.html"))[0]
        token = _token_from(entry.template_data["verification_url"])

        res = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert res.status_code == 200
        assert res.json()["status"] == "verified"

        me = await client.get("/api/v1/auth/me", headers={
            "Authorization": f"Bearer {reg.json()['access_token']}",
        })
        assert me.json()["email_verified"] is True

        # Single use
        res = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert res.status_code == 400

    async def test_verify_email_unknown_token(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/verify-email", json={"token": "nope"})
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid or expired verification token"


@pytest.mark.asyncio
class TestPasswordReset:
    async def test_forgot_password_unknown_email_is_silent(self, client: AsyncClient, db_session):
        res = await client.post("/api/v1/auth/forgot-password", json={"email": "ghost@test.com"})
        assert res.status_code == 200
        assert await _queued(db_session, "password_reset.html") == []

    async def test_reset_password_flow(self, client: AsyncClient, test_user, db_session):
        res = await client.post("/api/v1/auth/forgot-password", json={"email": "testuser@todoria.dev"})
        assert res.status_code == 200
        entries = await _queued(db_session, "password_reset.html")
        assert len(entries) == 1
        token = _token_from(entries[0].template_data["reset_url"])

        res = await client.post("/api/v1/auth/reset-password", json={
            "token": token,
            "password": "BrandNewPass456",
        })
        assert res.status_code == 200
        assert res.json()["status"] == "password_reset"

        old = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev", "password": TEST_PASSWORD,
        })
        assert old.status_code == 401
        new = await client.post("/api/v1/auth/login", json={
            "email": "testuser@todoria.dev", "password": "BrandNewPass456",
        })
        assert new.status_code == 200

        reused = await client.post("/api/v1/auth/reset-password", json={
            "token": token,
            "password": "AnotherPass789",
        })
        assert reused.status_code == 400

    async def test_reset_password_enforces_policy(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/reset-password", json={
            "token": "whatever",
            "password": "weak",
        })
        assert res.status_code == 422
