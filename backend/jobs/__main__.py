# jobs/__main__.py — `python -m jobs <job> [--run-once] [--dry-run]`
#
# Cron is the scheduler in production: `python -m jobs crontab` prints the lines
# to install. Without --run-once a job loops in the foreground every --interval
# seconds, which is handy for a worker container.

import argparse
import asyncio
import logging
import os
import sys

from database import engine
from jobs.backup import run_backup, BACKUP_SCHEDULE
from jobs.email_queue import process_email_queue, EMAIL_QUEUE_BATCH_SIZE, EMAIL_QUEUE_SCHEDULE, EMAIL_QUEUE_ENABLED
from jobs.reminders import send_reminder_emails, REMINDER_CRON_SCHEDULE, REMINDER_JOB_ENABLED
from jobs.retention import run_retention, RETENTION_SCHEDULE
from telemetry import setup_telemetry, job_span

logger = logging.getLogger("todoria.jobs")

DEFAULT_INTERVALS = {
    "backup": 86400,
    "retention": 86400,
    "reminders": 86400,
    "email_queue": 60,
}


def crontab_lines(python: str = None, workdir: str = None) -> list:
    python = python or sys.executable or "python"
    workdir = workdir or os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    schedules = [
        ("backup", BACKUP_SCHEDULE),
        ("retention", RETENTION_SCHEDULE),
        ("reminders", REMINDER_CRON_SCHEDULE),
        ("email_queue", EMAIL_QUEUE_SCHEDULE),
    ]
    return [
        f"{schedule} cd {workdir} && {python} -m jobs {name} --run-once"
        for name, schedule in schedules
    ]


async def run_job(name: str, dry_run: bool = False) -> dict:
    with job_span(name, dry_run=dry_run):
        return await _dispatch(name, dry_run)


async def _dispatch(name: str, dry_run: bool) -> dict:
    if name == "backup":
        return await run_backup(dry_run=dry_run)
    if name == "retention":
        return await run_retention(dry_run=dry_run)
    if name == "reminders":
        if not REMINDER_JOB_ENABLED:
            logger.info("Reminder job disabled via REMINDER_JOB_ENABLED=false")
            return {"skipped": True}
        return await send_reminder_emails(dry_run=dry_run or None)
    if name == "email_queue":
        if not EMAIL_QUEUE_ENABLED:
            logger.info("Email queue disabled via EMAIL_QUEUE_ENABLED=false")
            return {"skipped": True}
        if dry_run:
            logger.info("[dry run] Email queue processing skipped")
            return {"processed": 0, "sent": 0, "failed": 0, "retried": 0}
        return await process_email_queue(EMAIL_QUEUE_BATCH_SIZE)
    raise ValueError(f"Unknown job: {name}")


async def _loop(name: str, interval: int, dry_run: bool) -> None:
    while True:
        try:
            await run_job(name, dry_run)
        except Exception as e:
            logger.error(f"Job {name} failed: {e}")
        await asyncio.sleep(interval)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m jobs", description="Todoria scheduled jobs")
    parser.add_argument("job", choices=sorted(DEFAULT_INTERVALS) + ["crontab"], help="Job to run")
    parser.add_argument("--run-once", action="store_true", help="Run a single time and exit")
    parser.add_argument("--dry-run", action="store_true", help="Report what would happen without side effects")
    parser.add_argument("--interval", type=int, default=None, help="Seconds between runs when looping")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.job == "crontab":
        print("\n".join(crontab_lines()))
        return 0

    setup_telemetry(engine=engine)

    if not args.run_once:
        interval = args.interval or DEFAULT_INTERVALS[args.job]
        logger.info(f"Running {args.job} every {interval}s (Ctrl+C to stop)")
        try:
            asyncio.run(_loop(args.job, interval, args.dry_run))
        except KeyboardInterrupt:
            pass
        return 0

    try:
        result = asyncio.run(run_job(args.job, args.dry_run))
    except Exception as e:
        logger.error(f"Job {args.job} failed: {e}")
        return 1
    logger.info(f"Job {args.job} finished: {result}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
