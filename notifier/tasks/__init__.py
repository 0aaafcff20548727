from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "process_due_reminders_task",
    "scan_missed_reminders_task",
]
