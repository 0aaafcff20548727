from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = settings.REDIS_URL
result_backend = settings.REDIS_URL

# Task Discovery
include = ["notifier.tasks"]

# Timezone Configuration
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60
task_soft_time_limit = 25 * 60

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Acknowledgement
task_acks_late = True
task_reject_on_worker_lost = True

beat_schedule = {
    # Hourly, on the hour
    "process-due-reminders": {
        "task": "notifier.tasks.cron.reminder_processor.process_due_reminders_task",
        "schedule": crontab(minute=0),
        "args": ("process_due_reminders_cron",),
    },
    # Weekly backfill, Monday 03:00 UTC
    "scan-missed-reminders": {
        "task": "notifier.tasks.cron.missed_reminder_scanner.scan_missed_reminders_task",
        "schedule": crontab(hour=3, minute=0, day_of_week=1),
        "args": ("scan_missed_reminders_cron",),
    },
}

# Default Queue
task_default_queue = "reminders"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
