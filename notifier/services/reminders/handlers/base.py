from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from notifier.db.models import Reminder, ReminderChannel
from notifier.services.senders import NotificationSender, SendOutcome
from notifier.utils.logging import get_logger

logger = get_logger()


class BaseReminderHandler(ABC):
    """
    Delivers one kind of reminder.

    ``handle`` re-reads the referenced entity, returns False when it no longer
    needs the notification, and otherwise sends it and returns True. Delivery
    failures propagate as ``NotificationDeliveryError``.
    """

    def __init__(
        self,
        db_session: Session,
        reminder_type: str,
        sender: NotificationSender,
        now: datetime,
    ):
        self.db = db_session
        self.reminder_type = reminder_type
        self.sender = sender
        self.now = now

    @abstractmethod
    async def handle(self, reminder: Reminder) -> bool:
        pass

    @staticmethod
    def choose_channel(channel: ReminderChannel, phone: Optional[str]) -> ReminderChannel:
        """SMS only when asked for and a number is on record"""
        if channel == ReminderChannel.SMS and phone:
            return ReminderChannel.SMS
        return ReminderChannel.EMAIL

    async def deliver(
        self,
        channel: ReminderChannel,
        recipient: str,
        template_type: str,
        data: Dict[str, Any],
    ) -> SendOutcome:
        return await self.sender.send(channel, recipient, template_type, data)
