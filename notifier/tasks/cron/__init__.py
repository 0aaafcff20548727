from .reminder_processor import process_due_reminders_task
from .missed_reminder_scanner import scan_missed_reminders_task

__all__ = [
    "process_due_reminders_task",
    "scan_missed_reminders_task",
]
