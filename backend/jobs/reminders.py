# jobs/reminders.py — Due-date reminder emails for task assignees
import logging
import os
from collections import OrderedDict
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select, exists, and_
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_context
from email_service import queue_task_reminder, queue_multiple_tasks_reminder
from models import Task, TaskAssignment, TaskStatus, User, ReminderLog, utcnow

logger = logging.getLogger("todoria.jobs.reminders")

REMINDER_JOB_ENABLED = os.getenv("REMINDER_JOB_ENABLED", "true").lower() != "false"
REMINDER_CRON_SCHEDULE = os.getenv("REMINDER_CRON_SCHEDULE", "0 9 * * *")
REMINDER_LOOKAHEAD_DAYS = int(os.getenv("REMINDER_LOOKAHEAD_DAYS", "2"))
REMINDER_DRY_RUN = os.getenv("REMINDER_DRY_RUN", "false").lower() == "true"


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


async def find_due_reminders(db: AsyncSession, today: date, lookahead_days: int) -> "OrderedDict[str, dict]":
    """Open tasks due in [today, today + lookahead] grouped by assignee, minus pairs reminded today"""
    already_reminded = exists().where(and_(
        ReminderLog.task_id == Task.id,
        ReminderLog.user_id == User.id,
        ReminderLog.reminded_on == today,
    ))
    stmt = (
        select(Task, User)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .join(User, User.id == TaskAssignment.user_id)
        .where(
            Task.status != TaskStatus.COMPLETED,
            Task.completed_at.is_(None),
            Task.due_date.is_not(None),
            Task.due_date >= today,
            Task.due_date <= today + timedelta(days=lookahead_days),
            User.email_notifications_enabled.is_(True),
            User.is_active.is_(True),
            User.deleted_at.is_(None),
            ~already_reminded,
        )
        .order_by(User.email, Task.due_date, Task.title)
    )

    grouped: "OrderedDict[str, dict]" = OrderedDict()
    for task, user in (await db.execute(stmt)).all():
        entry = grouped.setdefault(user.id, {"user": user, "tasks": []})
        entry["tasks"].append(task)
    return grouped


def _queue_for(db: AsyncSession, user: User, tasks: list) -> None:
    if len(tasks) == 1:
        task = tasks[0]
        queue_task_reminder(
            db, user.email, user.first_name or user.name, task.title,
            task.due_date.isoformat(), task.description, _enum_value(task.priority),
        )
    else:
        queue_multiple_tasks_reminder(db, user.email, user.first_name or user.name, [
            {"title": t.title, "due_date": t.due_date.isoformat(), "priority": _enum_value(t.priority)}
            for t in tasks
        ])


async def queue_reminders(
    db: AsyncSession,
    dry_run: bool = False,
    lookahead_days: int = REMINDER_LOOKAHEAD_DAYS,
    today: Optional[date] = None,
) -> dict:
    """Queue one reminder email per assignee and record what was sent. Caller commits."""
    today = today or utcnow().date()
    grouped = await find_due_reminders(db, today, lookahead_days)
    total_tasks = sum(len(g["tasks"]) for g in grouped.values())

    if not grouped:
        logger.info(f"No tasks need reminders in the next {lookahead_days} day(s)")
        return {
            "sent": 0, "failed": 0, "total_tasks": 0, "lookahead_days": lookahead_days,
            "results": [], "message": "No tasks need reminders in the configured window.",
        }

    results, sent, failed = [], 0, 0
    for group in grouped.values():
        user, tasks = group["user"], group["tasks"]
        if dry_run:
            logger.info(f"[dry run] Would remind {user.email} about {len(tasks)} task(s)")
            results.append({"email": user.email, "count": len(tasks), "success": True, "error": None})
            sent += 1
            continue

        try:
            async with db.begin_nested():
                _queue_for(db, user, tasks)
                db.add_all([ReminderLog(task_id=t.id, user_id=user.id, reminded_on=today) for t in tasks])
        except Exception as e:
            logger.error(f"Failed to queue reminder for {user.email}: {e}")
            results.append({"email": user.email, "count": len(tasks), "success": False, "error": str(e)})
            failed += 1
            continue
        results.append({"email": user.email, "count": len(tasks), "success": True, "error": None})
        sent += 1

    return {
        "sent": sent,
        "failed": failed,
        "total_tasks": total_tasks,
        "lookahead_days": lookahead_days,
        "dry_run": dry_run,
        "results": results,
    }


async def send_reminder_emails(dry_run: Optional[bool] = None, lookahead_days: Optional[int] = None) -> dict:
    if dry_run is None:
        dry_run = REMINDER_DRY_RUN
    if lookahead_days is None:
        lookahead_days = REMINDER_LOOKAHEAD_DAYS

    logger.info(f"Reminder run started (lookahead={lookahead_days}d, dry_run={dry_run})")
    async with get_db_context() as db:
        summary = await queue_reminders(db, dry_run=dry_run, lookahead_days=lookahead_days)
    logger.info(
        f"Reminder run finished: sent={summary['sent']} failed={summary['failed']} "
        f"tasks={summary['total_tasks']}"
    )
    return summary
