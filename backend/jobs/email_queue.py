# jobs/email_queue.py — Deliver queued emails with exponential backoff
import asyncio
import logging
import os
from datetime import timedelta

from jinja2 import TemplateNotFound
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_context
from email_service import render_email, send_email
from models import EmailQueue, EmailStatus, as_utc, utcnow

logger = logging.getLogger("todoria.jobs.email_queue")

EMAIL_QUEUE_ENABLED = os.getenv("EMAIL_QUEUE_ENABLED", "true").lower() != "false"
EMAIL_QUEUE_SCHEDULE = os.getenv("EMAIL_QUEUE_SCHEDULE", "* * * * *")
EMAIL_QUEUE_BATCH_SIZE = int(os.getenv("EMAIL_QUEUE_BATCH_SIZE", "10"))


def backoff_elapsed(entry: EmailQueue, now=None) -> bool:
    """A retry waits 2^attempts seconds after the previous attempt"""
    if not entry.attempts or entry.last_attempted_at is None:
        return True
    now = now or utcnow()
    return now >= as_utc(entry.last_attempted_at) + timedelta(seconds=2 ** entry.attempts)


async def _ready_batch(db: AsyncSession, batch_size: int) -> list:
    stmt = (
        select(EmailQueue)
        .where(EmailQueue.status == EmailStatus.PENDING)
        .order_by(EmailQueue.created_at.asc())
        .limit(batch_size * 5)
    )
    now = utcnow()
    pending = (await db.execute(stmt)).scalars().all()
    return [e for e in pending if backoff_elapsed(e, now)][:batch_size]


async def deliver(entry: EmailQueue) -> tuple:
    try:
        html_body, text_body = render_email(entry.template, entry.template_data or {})
    except TemplateNotFound:
        return False, f"Unknown email template: {entry.template}"
    return await asyncio.to_thread(send_email, entry.to_email, entry.subject, html_body, text_body)


async def process_batch(db: AsyncSession, batch_size: int = EMAIL_QUEUE_BATCH_SIZE) -> dict:
    """Attempt one delivery per ready email. Caller commits."""
    summary = {"processed": 0, "sent": 0, "failed": 0, "retried": 0}
    for entry in await _ready_batch(db, batch_size):
        ok, error = await deliver(entry)
        entry.attempts = (entry.attempts or 0) + 1
        entry.last_attempted_at = utcnow()
        summary["processed"] += 1

        if ok:
            entry.status = EmailStatus.SENT
            entry.sent_at = entry.last_attempted_at
            entry.last_error = None
            summary["sent"] += 1
        elif entry.attempts >= entry.max_attempts:
            entry.status = EmailStatus.FAILED
            entry.last_error = error
            summary["failed"] += 1
            logger.error(f"Email {entry.id} to {entry.to_email} failed permanently: {error}")
        else:
            entry.last_error = error
            summary["retried"] += 1
            logger.warning(f"Email {entry.id} attempt {entry.attempts}/{entry.max_attempts} failed: {error}")
    return summary


async def process_email_queue(batch_size: int = EMAIL_QUEUE_BATCH_SIZE) -> dict:
    async with get_db_context() as db:
        summary = await process_batch(db, batch_size)
    if summary["processed"]:
        logger.info(
            f"Email queue: processed={summary['processed']} sent={summary['sent']} "
            f"failed={summary['failed']} retried={summary['retried']}"
        )
    return summary


async def get_queue_stats(db: AsyncSession = None) -> dict:
    """Count of queued emails per status"""
    if db is None:
        async with get_db_context() as session:
            return await get_queue_stats(session)

    rows = (await db.execute(
        select(EmailQueue.status, func.count(EmailQueue.id)).group_by(EmailQueue.status)
    )).all()
    stats = {s.value: 0 for s in EmailStatus}
    for status, count in rows:
        stats[status.value if hasattr(status, "value") else status] = count
    stats["total"] = sum(stats.values())
    return stats
