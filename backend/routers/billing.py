# routers/billing.py — Stripe subscriptions, checkout, customer portal & webhooks
import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional, List

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity import record_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from email_service import client_url, queue_trial_ending_email
from models import (
    Invoice, InvoiceStatus, Plan, Subscription, SubscriptionStatus,
    User, Workspace, WorkspaceMember, WorkspaceRole, utcnow,
)
from plan_limits import (
    FREE_PLAN_LIMITS, count_members, count_top_level_tasks,
    get_subscription, get_workspace_plan_limits,
)
from workspace_access import ensure_admin, ensure_member, require_workspace_admin

logger = logging.getLogger("todoria.billing")

router = APIRouter(prefix="/api/v1/billing", tags=["Billing"])

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_PRO_PRICE_ID = os.getenv("STRIPE_PRO_PRICE_ID", "")
TRIAL_PERIOD_DAYS = 14

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY

# Stripe statuses that have no direct equivalent in ours
_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "trialing": SubscriptionStatus.TRIALING,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.CANCELED,
}


def map_stripe_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    return _STATUS_MAP.get(stripe_status or "", SubscriptionStatus.ACTIVE)


# ============================================================
# SCHEMAS
# ============================================================

class PlanOut(BaseModel):
    id: str
    name: str
    price_per_seat_cents: int
    max_members: Optional[int] = None
    max_tasks: Optional[int] = None
    features: dict = {}


class CheckoutRequest(BaseModel):
    workspace_id: str


class PortalRequest(BaseModel):
    workspace_id: str


class InvoiceOut(BaseModel):
    id: str
    stripe_invoice_id: Optional[str] = None
    amount_cents: int
    currency: str
    status: str
    invoice_url: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    paid_at: Optional[str] = None
    created_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _from_unix(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _plan_out(plan: Plan) -> PlanOut:
    return PlanOut(
        id=plan.id,
        name=plan.name,
        price_per_seat_cents=plan.price_per_seat_cents,
        max_members=plan.max_members,
        max_tasks=plan.max_tasks,
        features=plan.features or {},
    )


def _require_stripe() -> None:
    if not stripe.api_key:
        raise HTTPException(status_code=503, detail="Billing is not configured")


async def _get_or_create_subscription(workspace_id: str, db: AsyncSession) -> Subscription:
    sub = await get_subscription(workspace_id, db)
    if sub is None:
        sub = Subscription(workspace_id=workspace_id, plan_id="free", status=SubscriptionStatus.ACTIVE)
        db.add(sub)
        await db.flush()
    return sub


def _event_workspace_id(obj: dict) -> Optional[str]:
    """Subscription events carry metadata directly; invoices via subscription_details"""
    metadata = obj.get("metadata") or {}
    details = (obj.get("subscription_details") or {}).get("metadata") or {}
    parent_meta = (((obj.get("parent") or {}).get("subscription_details") or {}).get("metadata") or {})
    return details.get("workspace_id") or parent_meta.get("workspace_id") or metadata.get("workspace_id")


# ============================================================
# PLANS & SUBSCRIPTION
# ============================================================

@router.get("/plans", response_model=List[PlanOut])
async def list_plans(db: AsyncSession = Depends(get_db_session)):
    """Public plan catalogue"""
    stmt = select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.price_per_seat_cents.asc())
    return [_plan_out(p) for p in (await db.execute(stmt)).scalars().all()]


@router.get("/subscription")
async def get_workspace_subscription(
    workspace_id: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await ensure_member(workspace_id, user, db)

    sub = await get_subscription(workspace_id, db)
    plan = await db.get(Plan, sub.plan_id if sub else "free")
    limits = await get_workspace_plan_limits(workspace_id, db)
    usage = {
        "tasks": await count_top_level_tasks(workspace_id, db),
        "members": await count_members(workspace_id, db),
    }

    return {
        "workspace_id": workspace_id,
        "plan": _plan_out(plan).model_dump() if plan else dict(FREE_PLAN_LIMITS),
        "status": sub.status.value if sub else SubscriptionStatus.ACTIVE.value,
        "seat_count": sub.seat_count if sub else 1,
        "trial_ends_at": _ts(sub.trial_ends_at) if sub else None,
        "current_period_start": _ts(sub.current_period_start) if sub else None,
        "current_period_end": _ts(sub.current_period_end) if sub else None,
        "cancel_at_period_end": bool(sub.cancel_at_period_end) if sub else False,
        "has_billing_account": bool(sub and sub.stripe_customer_id),
        "limits": {"max_members": limits["max_members"], "max_tasks": limits["max_tasks"]},
        "usage": usage,
    }


@router.post("/checkout")
async def create_checkout_session(
    data: CheckoutRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Stripe Checkout for the Pro plan, one seat per workspace member"""
    await ensure_admin(data.workspace_id, user, db)
    _require_stripe()
    if not STRIPE_PRO_PRICE_ID:
        raise HTTPException(status_code=500, detail="Stripe price configuration is missing")

    workspace = await db.get(Workspace, data.workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    seat_count = max(await count_members(data.workspace_id, db), 1)
    sub = await _get_or_create_subscription(data.workspace_id, db)

    try:
        if not sub.stripe_customer_id:
            customer = await asyncio.to_thread(
                stripe.Customer.create,
                email=user.email,
                name=user.name,
                metadata={"workspace_id": workspace.id, "workspace_name": workspace.name},
            )
            sub.stripe_customer_id = customer["id"]

        base = client_url()
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            customer=sub.stripe_customer_id,
            mode="subscription",
            line_items=[{"price": STRIPE_PRO_PRICE_ID, "quantity": seat_count}],
            subscription_data={
                "trial_period_days": TRIAL_PERIOD_DAYS,
                "metadata": {"workspace_id": workspace.id},
            },
            success_url=f"{base}/settings/billing?session_id={{CHECKOUT_SESSION_ID}}&success=true",
            cancel_url=f"{base}/settings/billing?canceled=true",
            metadata={"workspace_id": workspace.id},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for workspace {workspace.id}: {e}")
        raise HTTPException(status_code=502, detail="Error creating checkout session")

    record_audit(db, "billing.checkout_started", user_id=user.id, workspace_id=workspace.id,
                 resource_type="subscription", resource_id=sub.id,
                 details={"seats": seat_count}, request=request)
    await db.commit()
    return {"checkout_url": session["url"], "session_id": session["id"]}


@router.post("/portal")
async def create_portal_session(
    data: PortalRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await ensure_admin(data.workspace_id, user, db)
    _require_stripe()

    sub = await get_subscription(data.workspace_id, db)
    if not sub or not sub.stripe_customer_id:
        raise HTTPException(status_code=400, detail="No billing account found. Please set up billing first.")

    try:
        session = await asyncio.to_thread(
            stripe.billing_portal.Session.create,
            customer=sub.stripe_customer_id,
            return_url=f"{client_url()}/settings/billing",
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe portal failed for workspace {data.workspace_id}: {e}")
        raise HTTPException(status_code=502, detail="Error creating portal session")
    return {"portal_url": session["url"]}


@router.get("/invoices", response_model=List[InvoiceOut])
async def list_invoices(
    limit: int = Query(default=24, ge=1, le=100),
    membership: WorkspaceMember = Depends(require_workspace_admin),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = (
        select(Invoice)
        .where(Invoice.workspace_id == membership.workspace_id)
        .order_by(Invoice.created_at.desc())
        .limit(limit)
    )
    return [
        InvoiceOut(
            id=inv.id,
            stripe_invoice_id=inv.stripe_invoice_id,
            amount_cents=inv.amount_cents,
            currency=inv.currency,
            status=inv.status.value if isinstance(inv.status, InvoiceStatus) else inv.status,
            invoice_url=inv.invoice_url,
            period_start=_ts(inv.period_start),
            period_end=_ts(inv.period_end),
            paid_at=_ts(inv.paid_at),
            created_at=_ts(inv.created_at),
        )
        for inv in (await db.execute(stmt)).scalars().all()
    ]


# ============================================================
# WEBHOOK
# ============================================================

async def _apply_subscription(obj: dict, db: AsyncSession) -> None:
    workspace_id = _event_workspace_id(obj)
    if not workspace_id or not await db.get(Workspace, workspace_id):
        logger.warning(f"Subscription event {obj.get('id')} has no known workspace_id")
        return

    sub = await _get_or_create_subscription(workspace_id, db)
    items = ((obj.get("items") or {}).get("data") or [{}])
    first_item = items[0] if items else {}

    sub.plan_id = "pro"
    sub.stripe_subscription_id = obj.get("id")
    if obj.get("customer"):
        sub.stripe_customer_id = obj["customer"]
    sub.status = map_stripe_status(obj.get("status"))
    sub.trial_ends_at = _from_unix(obj.get("trial_end"))
    sub.current_period_start = _from_unix(obj.get("current_period_start") or first_item.get("current_period_start"))
    sub.current_period_end = _from_unix(obj.get("current_period_end") or first_item.get("current_period_end"))
    sub.seat_count = first_item.get("quantity") or 1
    sub.cancel_at_period_end = bool(obj.get("cancel_at_period_end"))
    sub.canceled_at = _from_unix(obj.get("canceled_at"))


async def _downgrade_subscription(obj: dict, db: AsyncSession) -> None:
    workspace_id = _event_workspace_id(obj)
    sub = await get_subscription(workspace_id, db) if workspace_id else None
    if not sub:
        return
    sub.plan_id = "free"
    sub.stripe_subscription_id = None
    sub.status = SubscriptionStatus.ACTIVE
    sub.trial_ends_at = None
    sub.current_period_start = None
    sub.current_period_end = None
    sub.cancel_at_period_end = False
    sub.canceled_at = utcnow()


async def _record_invoice(obj: dict, status: InvoiceStatus, db: AsyncSession) -> None:
    workspace_id = _event_workspace_id(obj)
    if not workspace_id or not await db.get(Workspace, workspace_id):
        return

    sub = await get_subscription(workspace_id, db)
    if status == InvoiceStatus.FAILED and sub:
        sub.status = SubscriptionStatus.PAST_DUE

    existing = (await db.execute(
        select(Invoice).where(Invoice.stripe_invoice_id == obj.get("id"))
    )).scalar_one_or_none()
    if existing:
        existing.status = status
        if status == InvoiceStatus.PAID:
            existing.paid_at = utcnow()
        return

    paid = status == InvoiceStatus.PAID
    db.add(Invoice(
        workspace_id=workspace_id,
        subscription_id=sub.id if sub else None,
        stripe_invoice_id=obj.get("id"),
        amount_cents=(obj.get("amount_paid") if paid else obj.get("amount_due")) or 0,
        currency=obj.get("currency") or "usd",
        status=status,
        invoice_url=obj.get("hosted_invoice_url") or obj.get("invoice_pdf"),
        period_start=_from_unix(obj.get("period_start")),
        period_end=_from_unix(obj.get("period_end")),
        paid_at=utcnow() if paid else None,
    ))


async def _notify_trial_ending(obj: dict, db: AsyncSession) -> None:
    workspace_id = _event_workspace_id(obj)
    if not workspace_id:
        return
    trial_end = _from_unix(obj.get("trial_end"))
    stmt = (
        select(User)
        .join(WorkspaceMember, WorkspaceMember.user_id == User.id)
        .where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.role == WorkspaceRole.ADMIN,
            User.deleted_at.is_(None),
        )
    )
    for admin in (await db.execute(stmt)).scalars().all():
        queue_trial_ending_email(
            db, admin.email, admin.first_name or admin.name,
            trial_end.strftime("%B %d, %Y") if trial_end else "soon",
            f"{client_url()}/settings/billing",
        )
    logger.info(f"Trial ending soon for workspace {workspace_id}")


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db_session)):
    """Stripe webhook; the signature is checked against the raw body"""
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event = json.loads(payload)
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    try:
        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            await _apply_subscription(obj, db)
        elif event_type == "customer.subscription.deleted":
            await _downgrade_subscription(obj, db)
        elif event_type == "invoice.paid":
            await _record_invoice(obj, InvoiceStatus.PAID, db)
        elif event_type == "invoice.payment_failed":
            await _record_invoice(obj, InvoiceStatus.FAILED, db)
        elif event_type == "customer.subscription.trial_will_end":
            await _notify_trial_ending(obj, db)
        else:
            logger.debug(f"Ignoring Stripe event {event_type}")
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Webhook processing failed for {event_type}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {"received": True}
