from .core import ReminderSchedulingService, is_request_valid_for_reminder
from .channels import ChannelRouter
from .request import RequestReminderService
from .engagement import EngagementReminderService
from .subscription import SubscriptionReminderService
from .processor import ReminderProcessor, process_due_reminders
from .recovery import MissedReminderScanner, scan_and_schedule_missed_reminders

__all__ = [
    "ReminderSchedulingService",
    "is_request_valid_for_reminder",
    "ChannelRouter",
    "RequestReminderService",
    "EngagementReminderService",
    "SubscriptionReminderService",
    "ReminderProcessor",
    "process_due_reminders",
    "MissedReminderScanner",
    "scan_and_schedule_missed_reminders",
]
