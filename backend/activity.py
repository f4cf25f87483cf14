# activity.py — Activity feed and audit log writers
import logging
import uuid
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import client_ip
from models import ActivityLog, AuditLog

logger = logging.getLogger("todoria.activity")


async def log_activity(
    db: AsyncSession,
    workspace_id: str,
    user_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    extra: Optional[dict] = None,
) -> None:
    """Add an activity row to the session. Never raises: the feed is best effort."""
    try:
        db.add(ActivityLog(
            workspace_id=workspace_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            extra_data=extra or {},
        ))
    except Exception as e:
        logger.error(f"Failed to record activity {action} {entity_type}:{entity_id}: {e}")


def record_audit(
    db: AsyncSession,
    action: str,
    user_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    request_id = None
    if request is not None:
        request_id = getattr(request.state, "request_id", None)
    db.add(AuditLog(
        action=action,
        user_id=user_id,
        workspace_id=workspace_id,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") if request is not None else None,
        request_id=request_id or str(uuid.uuid4()),
    ))
