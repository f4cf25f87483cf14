# email_service.py — Transactional email: templates, SMTP delivery, queue helpers
"""
Emails are never sent inline from a request. Routers enqueue a row in
``email_queue`` (template name + data) and the email queue job renders and
delivers it over SMTP, retrying with exponential backoff.
"""
import html
import logging
import os
import re
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.ext.asyncio import AsyncSession

from models import EmailQueue

logger = logging.getLogger("todoria.email")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
EMAIL_FROM = os.getenv("EMAIL_FROM", "Todoria <no-reply@todoria.com>")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates" / "email"

PRIORITY_COLORS = {
    "urgent": "#ef4444",
    "high": "#ef4444",
    "medium": "#f59e0b",
    "low": "#22c55e",
}

_TAG = re.compile(r"<[^>]*>")


def client_url() -> str:
    return os.getenv("CLIENT_URL", "http://localhost:3000").rstrip("/")


def priority_color(priority: Optional[str]) -> str:
    return PRIORITY_COLORS.get(priority or "medium", PRIORITY_COLORS["medium"])


# ============================================================
# TEMPLATES
# ============================================================

# Values are escaped unless a template marks them |safe (pre-built rows, URLs, colors)
templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"], default_for_string=True),
    finalize=lambda value: "" if value is None else value,
)


def render_string(template: str, data: dict) -> str:
    return templates.from_string(template).render(**data)


def strip_html(markup: str) -> str:
    return re.sub(r"\s+", " ", _TAG.sub(" ", markup)).strip()


def render_email(template_name: str, data: dict) -> Tuple[str, str]:
    """Returns (html, text). Raises jinja2.TemplateNotFound for unknown names."""
    markup = templates.get_template(template_name).render(**(data or {}))
    return markup, strip_html(markup)


# ============================================================
# DELIVERY
# ============================================================

def send_email(to: str, subject: str, html_body: str, text_body: str) -> Tuple[bool, str]:
    """Blocking SMTP send. Returns (ok, error_message)."""
    if not SMTP_HOST:
        logger.warning(f"SMTP_HOST not configured, cannot send '{subject}' to {to}")
        return False, "SMTP not configured"

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = EMAIL_FROM
    msg["To"] = to
    msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
            if SMTP_USE_TLS:
                smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
        return True, ""
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)[:400]


# ============================================================
# QUEUE HELPERS (caller commits)
# ============================================================

def queue_email(
    db: AsyncSession,
    to: str,
    subject: str,
    template: str,
    template_data: dict,
    max_attempts: int = 3,
) -> EmailQueue:
    entry = EmailQueue(
        to_email=to,
        subject=subject,
        template=template,
        template_data=template_data,
        max_attempts=max_attempts,
    )
    db.add(entry)
    return entry


def queue_task_reminder(db, to, user_name, task_name, due_date, task_description=None, priority=None):
    return queue_email(db, to, f'⏰ Reminder: "{task_name}" is due soon', "task_reminder.html", {
        "user_name": user_name or "there",
        "task_name": task_name,
        "task_description": task_description,
        "due_date": due_date,
        "priority": priority or "medium",
        "priority_color": priority_color(priority),
    })


def build_task_rows(tasks: list) -> str:
    """Pre-rendered <tr> rows for the multi-task reminder; task fields are escaped here"""
    rows = []
    for t in tasks:
        rows.append(
            "<tr>"
            f"<td>{html.escape(t['title'])}</td>"
            f"<td>{html.escape(str(t.get('due_date') or ''))}</td>"
            f"<td style=\"color: {priority_color(t.get('priority'))};\">"
            f"{html.escape(t.get('priority') or 'medium')}</td>"
            "</tr>"
        )
    return "".join(rows)


def queue_multiple_tasks_reminder(db, to, user_name, tasks: list):
    count = len(tasks)
    plural = "s" if count > 1 else ""
    return queue_email(
        db, to, f"⏰ Reminder: You have {count} task{plural} due soon", "multiple_tasks_reminder.html", {
            "user_name": user_name or "there",
            "task_count": count,
            "task_plural": plural,
            "task_verb": "are" if count > 1 else "is",
            "task_rows": build_task_rows(tasks),
        },
    )


def queue_task_assignment(db, to, user_name, task_id, task_title, assigned_by_name=None,
                          task_description=None, due_date=None, priority=None):
    return queue_email(db, to, f'New Task Assigned: "{task_title}"', "task_assignment.html", {
        "user_name": user_name or "there",
        "task_title": task_title,
        "task_description": task_description,
        "assigned_by_name": assigned_by_name or "A team member",
        "due_date": due_date,
        "priority": priority or "medium",
        "priority_color": priority_color(priority),
        "task_url": f"{client_url()}/tasks?taskId={task_id}",
    })


def queue_workspace_invite(db, to, inviter_name, workspace_name, invite_url):
    return queue_email(db, to, f"You're invited to join {workspace_name} on Todoria", "workspace_invite.html", {
        "inviter_name": inviter_name or "A team member",
        "workspace_name": workspace_name,
        "invite_url": invite_url,
    })


def queue_welcome_email(db, to, user_name):
    return queue_email(db, to, "Welcome to Todoria!", "welcome.html", {"user_name": user_name or "there"})


def queue_verification_email(db, to, user_name, verification_url):
    return queue_email(db, to, "Verify Your Email — Todoria", "email_verification.html", {
        "user_name": user_name or "there",
        "verification_url": verification_url,
    })


def queue_password_reset_email(db, to, user_name, reset_url):
    return queue_email(db, to, "Reset Your Password — Todoria", "password_reset.html", {
        "user_name": user_name or "there",
        "reset_url": reset_url,
    })


def queue_trial_ending_email(db, to, user_name, trial_end_date, billing_url):
    return queue_email(db, to, "Your Todoria Pro trial ends soon", "trial_ending.html", {
        "user_name": user_name or "there",
        "trial_end_date": trial_end_date,
        "billing_url": billing_url,
    })
