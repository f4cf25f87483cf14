# tests/test_plan_limits.py — Plan limits and the billing guard
import pytest
from fastapi import HTTPException
from sqlalchemy import select

from models import Subscription, SubscriptionStatus, Task, Workspace, WorkspaceInvitation, utcnow
from plan_limits import (
    check_member_limit, check_task_limit, check_workspace_limit,
    get_workspace_plan_limits, require_active_subscription,
)
from tests.conftest import add_member, make_user


async def _subscribe(db_session, workspace, status, plan_id="pro"):
    db_session.add(Subscription(workspace_id=workspace.id, plan_id=plan_id, status=status))
    await db_session.commit()


@pytest.mark.asyncio
class TestEffectiveLimits:
    async def test_no_subscription_is_free(self, db_session, workspace):
        limits = await get_workspace_plan_limits(workspace.id, db_session)
        assert limits["plan_id"] == "free"
        assert limits["max_tasks"] == 50

    async def test_trialing_pro(self, db_session, workspace):
        await _subscribe(db_session, workspace, SubscriptionStatus.TRIALING)
        limits = await get_workspace_plan_limits(workspace.id, db_session)
        assert limits == {"plan_id": "pro", "plan_name": "Pro", "max_members": 50, "max_tasks": None}

    async def test_past_due_pro_falls_back_to_free(self, db_session, workspace):
        await _subscribe(db_session, workspace, SubscriptionStatus.PAST_DUE)
        limits = await get_workspace_plan_limits(workspace.id, db_session)
        assert limits["plan_id"] == "free"


@pytest.mark.asyncio
class TestLimitChecks:
    async def test_task_limit_counts_top_level_only(self, db_session, workspace):
        db_session.add_all([Task(workspace_id=workspace.id, title=f"T{i}", position=i) for i in range(49)])
        await db_session.commit()
        await check_task_limit(workspace.id, db_session)

        parent = Task(workspace_id=workspace.id, title="T49", position=49)
        db_session.add(parent)
        await db_session.flush()
        db_session.add(Task(workspace_id=workspace.id, title="Sub", parent_task_id=parent.id))
        await db_session.commit()

        with pytest.raises(HTTPException) as exc:
            await check_task_limit(workspace.id, db_session)
        assert exc.value.status_code == 403
        assert exc.value.detail["code"] == "PLAN_LIMIT_TASKS"
        assert exc.value.detail["current"] == 50
        assert "Free plan" in exc.value.detail["message"]

    async def test_pro_has_no_task_limit(self, db_session, workspace):
        await _subscribe(db_session, workspace, SubscriptionStatus.ACTIVE)
        db_session.add_all([Task(workspace_id=workspace.id, title=f"T{i}", position=i) for i in range(60)])
        await db_session.commit()
        await check_task_limit(workspace.id, db_session)

    async def test_member_limit_includes_pending_invites(self, db_session, workspace, test_user, second_user):
        await add_member(db_session, workspace, second_user)
        await check_member_limit(workspace.id, db_session)

        db_session.add(WorkspaceInvitation(
            workspace_id=workspace.id, email="pending@todoria.dev", token="tok",
            invited_by=test_user.id, expires_at=utcnow().replace(year=2099),
        ))
        await db_session.commit()
        with pytest.raises(HTTPException) as exc:
            await check_member_limit(workspace.id, db_session)
        assert exc.value.detail["code"] == "PLAN_LIMIT_MEMBERS"
        assert exc.value.detail["limit"] == 3

    async def test_workspace_limit(self, db_session, test_user, workspace):
        with pytest.raises(HTTPException) as exc:
            await check_workspace_limit(test_user.id, db_session)
        assert exc.value.detail["limit"] == 1

        await _subscribe(db_session, workspace, SubscriptionStatus.ACTIVE)
        await check_workspace_limit(test_user.id, db_session)

    async def test_pro_workspace_limit_is_ten(self, db_session, workspace):
        owner = await make_user(db_session, "owner@todoria.dev", "Busy Owner")
        db_session.add_all([Workspace(name=f"W{i}", owner_id=owner.id) for i in range(10)])
        await db_session.commit()
        first_id = (await db_session.execute(
            select(Workspace.id).where(Workspace.owner_id == owner.id).limit(1)
        )).scalar_one()
        db_session.add(Subscription(workspace_id=first_id, plan_id="pro", status=SubscriptionStatus.ACTIVE))
        await db_session.commit()

        with pytest.raises(HTTPException) as exc:
            await check_workspace_limit(owner.id, db_session)
        assert exc.value.detail == {
            "code": "PLAN_LIMIT_WORKSPACES",
            "message": "Pro plan allows up to 10 workspaces.",
            "limit": 10,
            "current": 10,
            "plan_id": "pro",
        }


@pytest.mark.asyncio
class TestBillingGuard:
    async def test_free_and_active_pass(self, db_session, workspace):
        await require_active_subscription(workspace.id, db_session)
        await _subscribe(db_session, workspace, SubscriptionStatus.ACTIVE)
        await require_active_subscription(workspace.id, db_session)

    @pytest.mark.parametrize("status,code", [
        (SubscriptionStatus.PAST_DUE, "PAYMENT_PAST_DUE"),
        (SubscriptionStatus.CANCELED, "SUBSCRIPTION_CANCELED"),
    ])
    async def test_blocked_statuses(self, db_session, workspace, status, code):
        await _subscribe(db_session, workspace, status)
        with pytest.raises(HTTPException) as exc:
            await require_active_subscription(workspace.id, db_session)
        assert exc.value.status_code == 402
        assert exc.value.detail["code"] == code
