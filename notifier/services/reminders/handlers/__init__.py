from .base import BaseReminderHandler
from .registry import ReminderHandlerRegistry

__all__ = ["BaseReminderHandler", "ReminderHandlerRegistry"]
