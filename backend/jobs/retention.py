# jobs/retention.py — Data retention cleanup
import logging
import os
from datetime import timedelta

from sqlalchemy import delete, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_context
from models import AuditLog, WorkspaceInvitation, utcnow

logger = logging.getLogger("todoria.jobs.retention")

RETENTION_ENABLED = os.getenv("RETENTION_ENABLED", "true").lower() != "false"
RETENTION_SCHEDULE = os.getenv("RETENTION_SCHEDULE", "0 3 * * *")
EXPIRED_INVITE_GRACE_DAYS = 30
AUDIT_LOG_RETENTION_DAYS = 730


async def cleanup(db: AsyncSession) -> dict:
    now = utcnow()

    invites = await db.execute(
        delete(WorkspaceInvitation)
        .where(WorkspaceInvitation.expires_at < now - timedelta(days=EXPIRED_INVITE_GRACE_DAYS))
    )
    logs = await db.execute(
        update(AuditLog)
        .where(
            AuditLog.created_at < now - timedelta(days=AUDIT_LOG_RETENTION_DAYS),
            or_(
                AuditLog.user_id.is_not(None),
                AuditLog.ip_address.is_not(None),
                AuditLog.user_agent.is_not(None),
            ),
        )
        .values(user_id=None, ip_address=None, user_agent=None)
        .execution_options(synchronize_session=False)
    )
    return {"deleted_invites": invites.rowcount or 0, "anonymized_logs": logs.rowcount or 0}


async def run_retention(dry_run: bool = False) -> dict:
    """Delete long-expired invitations and anonymise audit logs older than two years"""
    if not RETENTION_ENABLED:
        logger.info("Retention cleanup disabled via RETENTION_ENABLED=false")
        return {"skipped": True}

    logger.info("Starting retention cleanup")
    async with get_db_context() as db:
        summary = await cleanup(db)
        if dry_run:
            await db.rollback()
    logger.info(
        f"Retention cleanup complete: deleted_invites={summary['deleted_invites']} "
        f"anonymized_logs={summary['anonymized_logs']}{' (dry run)' if dry_run else ''}"
    )
    return summary
