"""
APScheduler configuration for periodic backups.

Manages:
- The scheduled backup (crontab expression) with retry
- Retention enforcement after each successful backup
- Manual triggers
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from blobsnap.backup.retention import RetentionManager
from blobsnap.errors import BlobSnapError, ObjectNotFoundError


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup'

# Global scheduler instance, the storage it backs up and its configuration
scheduler = None
backup_storage = None
scheduler_config = None
last_error = None


def init_scheduler(storage, app_config):
    """
    Initialize and configure APScheduler.

    Args:
        storage: BlobStorage to back up
        app_config: Config class providing SCHEDULE_CRON, retry and retention settings
    """
    global scheduler, backup_storage, scheduler_config

    if scheduler is not None:
        return scheduler

    backup_storage = storage
    scheduler_config = app_config

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one backup at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app_config.SCHEDULER_TIMEZONE
    )

    scheduler.add_job(
        func=run_backup,
        trigger=CronTrigger.from_crontab(app_config.SCHEDULE_CRON, timezone=app_config.SCHEDULER_TIMEZONE),
        id=BACKUP_JOB_ID,
        name=f"Backup: {storage.key}",
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """Start the APScheduler."""
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler, backup_storage, scheduler_config

    if scheduler is not None and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")

    scheduler = None
    backup_storage = None
    scheduler_config = None


def _retention_policy(app_config):
    keep_last = app_config.RETENTION_KEEP_LAST
    days = app_config.RETENTION_DAYS
    return (
        int(keep_last) if keep_last not in (None, '') else None,
        timedelta(days=float(days)) if days not in (None, '') else None,
    )


def run_backup() -> Optional[str]:
    """
    Back up the configured storage, retrying transient failures.

    Runs in the scheduler's worker thread, so failures are logged and kept
    in ``last_error`` instead of being raised.

    Returns:
        Snapshot key, or None if every attempt failed
    """
    global last_error

    if backup_storage is None:
        raise RuntimeError("Scheduler not initialized")

    attempts = scheduler_config.BACKUP_MAX_RETRIES + 1
    snapshot_key = None

    for attempt in range(1, attempts + 1):
        try:
            snapshot_key = backup_storage.backup()
            break
        except ObjectNotFoundError as e:
            # Nothing to back up yet; retrying will not help
            last_error = str(e)
            logger.error(f"Backup skipped: {e}")
            return None
        except BlobSnapError as e:
            last_error = str(e)
            logger.warning(f"Backup attempt {attempt}/{attempts} failed: {e}")
            if attempt == attempts:
                logger.error(f"Backup of {backup_storage.key} failed after {attempts} attempts")
                return None
            time.sleep(scheduler_config.BACKUP_RETRY_DELAY)

    last_error = None
    logger.info(f"Scheduled backup created: {snapshot_key}")

    keep_last, max_age = _retention_policy(scheduler_config)
    if keep_last is not None or max_age is not None:
        try:
            summary = RetentionManager(backup_storage).enforce(keep_last=keep_last, max_age=max_age)
            for error in summary['errors']:
                logger.error(error)
        except BlobSnapError as e:
            logger.error(f"Retention enforcement failed: {e}")

    return snapshot_key


def trigger_backup_now():
    """
    Manually trigger a backup immediately.

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    # 1 second delay avoids racing the scheduler thread on startup
    scheduler.add_job(
        func=run_backup,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"manual_{int(now.timestamp() * 1000)}",
        name=f"Manual: {backup_storage.key}",
        replace_existing=False
    )

    logger.info(f"Manually triggered backup of {backup_storage.key}")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
