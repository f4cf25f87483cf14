# jobs/backup.py — pg_dump database backups
import asyncio
import logging
import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from database import DATABASE_URL

logger = logging.getLogger("todoria.jobs.backup")

BACKUP_ENABLED = os.getenv("BACKUP_ENABLED", "false").lower() == "true"
BACKUP_SCHEDULE = os.getenv("BACKUP_SCHEDULE", "0 2 * * *")
BACKUP_DIR = os.getenv("BACKUP_DIR", "/tmp/todoria-backups")
BACKUP_TIMEOUT_SECONDS = 300


class BackupError(Exception):
    pass


def pg_dump_url(database_url: str) -> str:
    """pg_dump speaks libpq URLs, not SQLAlchemy driver URLs"""
    scheme, sep, rest = database_url.partition("://")
    if not sep or not scheme.startswith("postgresql"):
        raise BackupError(f"Backups need a PostgreSQL DATABASE_URL, got '{scheme}'")
    return f"postgresql://{rest}"


def backup_filename(now: datetime = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"backup-{now.strftime('%Y-%m-%dT%H-%M-%S')}.sql"


def _dump(target: Path, url: str) -> None:
    try:
        subprocess.run(
            ["pg_dump", "--no-owner", "--file", str(target), url],
            check=True,
            capture_output=True,
            timeout=BACKUP_TIMEOUT_SECONDS,
        )
    except FileNotFoundError:
        raise BackupError("pg_dump not found on PATH")
    except subprocess.TimeoutExpired:
        raise BackupError(f"pg_dump timed out after {BACKUP_TIMEOUT_SECONDS}s")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode(errors="replace").strip()
        raise BackupError(f"pg_dump exited with {e.returncode}: {stderr[:300]}")


async def run_backup(dry_run: bool = False, force: bool = False) -> dict:
    """Dump DATABASE_URL into BACKUP_DIR. Disabled unless BACKUP_ENABLED=true (or force)."""
    if not (BACKUP_ENABLED or force):
        logger.info("Backup disabled (set BACKUP_ENABLED=true to enable)")
        return {"skipped": True}

    url = pg_dump_url(DATABASE_URL)
    target = Path(BACKUP_DIR) / backup_filename()

    if dry_run:
        logger.info(f"[dry run] Would write backup to {target}")
        return {"skipped": False, "dry_run": True, "file": str(target)}

    target.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Starting database backup to {target}")
    await asyncio.to_thread(_dump, target, url)

    size = target.stat().st_size if target.exists() else 0
    logger.info(f"Database backup completed: {target.name} ({size} bytes)")
    return {"skipped": False, "file": str(target), "size_bytes": size}
