"""Task scheduler for appointment reminders."""

from .reminders import (
    check_and_send_reminders,
    select_due_reminders,
    send_reminder,
    setup_scheduler,
    shutdown_scheduler,
)

__all__ = [
    "check_and_send_reminders",
    "select_due_reminders",
    "send_reminder",
    "setup_scheduler",
    "shutdown_scheduler",
]
