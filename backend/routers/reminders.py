# routers/reminders.py — HTTP trigger for the reminder job (external cron)
import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from jobs.email_queue import get_queue_stats
from jobs.reminders import (
    queue_reminders, REMINDER_JOB_ENABLED, REMINDER_LOOKAHEAD_DAYS, REMINDER_DRY_RUN, REMINDER_CRON_SCHEDULE,
)

logger = logging.getLogger("todoria.reminders")

router = APIRouter(prefix="/api/v1/reminders", tags=["Reminders"])


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """When CRON_SECRET is set the caller must send it as a Bearer token"""
    secret = os.getenv("CRON_SECRET")
    if not secret:
        return
    if not authorization or not hmac.compare_digest(authorization, f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.post("/trigger", dependencies=[Depends(verify_cron_secret)])
async def trigger_reminders(db: AsyncSession = Depends(get_db_session)):
    if not REMINDER_JOB_ENABLED:
        return {"status": "skipped", "message": "Reminder job is disabled", "summary": {"sent": 0, "failed": 0}}

    try:
        summary = await queue_reminders(db, dry_run=REMINDER_DRY_RUN, lookahead_days=REMINDER_LOOKAHEAD_DAYS)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Reminder trigger failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to run reminder job")

    logger.info(f"Reminder trigger queued {summary['sent']} email(s)")
    return {"status": "ok", "message": "Reminder job completed", "summary": summary}


@router.get("/status")
async def reminder_status(db: AsyncSession = Depends(get_db_session)):
    return {
        "status": "ok",
        "enabled": REMINDER_JOB_ENABLED,
        "schedule": REMINDER_CRON_SCHEDULE,
        "lookahead_days": REMINDER_LOOKAHEAD_DAYS,
        "dry_run": REMINDER_DRY_RUN,
        "email_queue": await get_queue_stats(db),
    }
