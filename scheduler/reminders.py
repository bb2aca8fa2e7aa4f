"""
Scheduler for appointment reminders using APScheduler.
Dispatches pending reminders through the notification edge function once
they are due (appointment start minus ``minutes_before``).

Supports Redis backend for horizontal scaling (multiple service instances).
"""

from datetime import datetime
from typing import Dict, List, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Redis jobstore is optional - only import if Redis is configured
try:
    from apscheduler.jobstores.redis import RedisJobStore

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    RedisJobStore = None

from config import settings
from db import get_db_client
from models.appointment import Appointment
from models.reminder import AppointmentReminder, ReminderStatus
from utils.datetime_utils import utc_now
from utils.exceptions import DatabaseError, NotificationError
from utils.logging_config import setup_logging

logger = setup_logging(
    name=__name__, log_level="INFO", log_file="scheduler.log", log_dir="logs"
)


def _create_scheduler() -> AsyncIOScheduler:
    """
    Create scheduler with Redis backend for clustering support.

    Falls back to default in-memory scheduler if Redis is not configured.
    """
    redis_url = getattr(settings, "redis_url", None)

    if redis_url and REDIS_AVAILABLE and RedisJobStore:
        try:
            # redis://host:port/db or redis://:password@host:port/db
            from urllib.parse import urlparse

            parsed = urlparse(redis_url)
            host = parsed.hostname or "localhost"
            port = parsed.port or 6379
            db = int(parsed.path.lstrip("/")) if parsed.path.lstrip("/") else 0

            jobstores = {
                "default": RedisJobStore(
                    host=host, port=port, db=db, password=parsed.password
                )
            }
            logger.info(f"Scheduler using Redis backend: {host}:{port}/{db}")
            return AsyncIOScheduler(jobstores=jobstores)
        except Exception as e:
            logger.warning(
                f"Failed to initialize Redis scheduler: {e}. Falling back to in-memory scheduler."
            )
            return AsyncIOScheduler()

    if redis_url and not REDIS_AVAILABLE:
        logger.warning(
            "Redis URL configured but RedisJobStore not available. Install redis package."
        )
    logger.info("Scheduler using in-memory backend (single instance mode)")
    return AsyncIOScheduler()


scheduler = _create_scheduler()


def select_due_reminders(
    reminders: List[AppointmentReminder],
    appointments: Dict[str, Appointment],
    now: datetime,
) -> Tuple[List[Tuple[AppointmentReminder, Appointment]], List[AppointmentReminder]]:
    """
    Split pending reminders into due and undeliverable.

    A reminder is due once ``now`` has reached its due time while the
    appointment has not started yet. Reminders of missing, cancelled or
    already-started appointments can never be delivered. Everything else
    waits for a later run.

    Returns:
        (due reminders with their appointment, undeliverable reminders)
    """
    due = []
    undeliverable = []

    for reminder in reminders:
        appointment = appointments.get(reminder.appointment_id)
        if appointment is None or appointment.is_cancelled:
            undeliverable.append(reminder)
            continue

        if appointment.start_time <= now:
            undeliverable.append(reminder)
            continue

        if reminder.due_at(appointment.start_time) <= now:
            due.append((reminder, appointment))

    return due, undeliverable


def _notification_body(
    reminder: AppointmentReminder, appointment: Appointment
) -> Dict[str, str]:
    start = appointment.start_time.strftime("%d.%m.%Y at %H:%M %Z")
    message = reminder.message or (
        f"Reminder: {appointment.title or 'Appointment'} with "
        f"{appointment.provider_name or 'your provider'} on {start}."
    )
    return {
        "user_id": reminder.created_by or appointment.provider_id or "",
        "title": f"Appointment reminder: {appointment.patient_name or appointment.title}",
        "message": message,
        "notification_id": reminder.id or "",
        "priority": "normal",
    }


async def send_reminder(reminder: AppointmentReminder, appointment: Appointment) -> bool:
    """
    Send one reminder through the notification edge function.

    Returns:
        True if sent successfully, False otherwise
    """
    db = get_db_client()

    try:
        await db.invoke_function(
            settings.notification_function, _notification_body(reminder, appointment)
        )
    except NotificationError as e:
        logger.error(f"Failed to send reminder {reminder.id}: {e}", exc_info=True)
        await db.update_reminder_status(reminder.id, ReminderStatus.FAILED)
        return False

    updated = await db.update_reminder_status(reminder.id, ReminderStatus.SENT)
    if not updated:
        logger.warning(f"Failed to mark reminder {reminder.id} as sent")
        return False

    logger.info(f"Reminder {reminder.id} sent for appointment {appointment.id}")
    return True


async def check_and_send_reminders() -> None:
    """Check for reminders that are due and send them."""
    try:
        db = get_db_client()
        reminders = await db.get_pending_reminders(settings.reminder_batch_limit)

        if not reminders:
            logger.debug("No pending reminders at this time")
            return

        appointment_ids = list({r.appointment_id for r in reminders})
        appointments = await db.get_appointments_by_ids(appointment_ids)

        due, undeliverable = select_due_reminders(reminders, appointments, utc_now())

        for reminder in undeliverable:
            logger.warning(
                f"Reminder {reminder.id} cannot be delivered "
                f"(appointment {reminder.appointment_id} missing, cancelled or past)"
            )
            await db.update_reminder_status(reminder.id, ReminderStatus.FAILED)

        sent_count = 0
        failed_count = len(undeliverable)
        for reminder, appointment in due:
            if await send_reminder(reminder, appointment):
                sent_count += 1
            else:
                failed_count += 1

        logger.info(
            f"Reminder processing complete: {sent_count} sent, {failed_count} failed"
        )

    except DatabaseError as e:
        logger.error(f"Database error checking reminders: {e}", exc_info=True)
    except Exception as e:
        logger.error(f"Unexpected error checking reminders: {e}", exc_info=True)


def setup_scheduler() -> None:
    """Register the reminder job and start the scheduler."""
    scheduler.add_job(
        check_and_send_reminders,
        trigger=IntervalTrigger(minutes=settings.reminder_check_interval_minutes),
        id="check_reminders",
        name="Check and send appointment reminders",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started")


def shutdown_scheduler() -> None:
    """Shutdown the scheduler if it is running."""
    if not scheduler.running:
        return
    scheduler.shutdown()
    logger.info("Scheduler stopped")
