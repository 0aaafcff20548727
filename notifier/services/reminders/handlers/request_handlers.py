from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.config.settings import settings
from notifier.db.models import PaymentRequest, Reminder, ReminderChannel, ReminderType
from notifier.services.reminders.constants import (
    INVOICE_DUE_OFFSETS,
    INVOICE_OVERDUE_OFFSETS,
)
from notifier.services.reminders.core import is_request_valid_for_reminder
from notifier.services.senders.templates import format_amount
from .base import BaseReminderHandler
from notifier.utils.logging import get_logger

logger = get_logger()


class RequestReminderHandler(BaseReminderHandler):
    """Nudges the recipient of a payment request or invoice."""

    def _get_request(self, request_id: str) -> Optional[PaymentRequest]:
        return self.db.execute(
            select(PaymentRequest).where(PaymentRequest.id == request_id)
        ).scalar_one_or_none()

    def _template(self) -> tuple:
        """Template type and day offset for this reminder kind"""
        if self.reminder_type in INVOICE_DUE_OFFSETS:
            return "invoice_due", INVOICE_DUE_OFFSETS[self.reminder_type]
        if self.reminder_type in INVOICE_OVERDUE_OFFSETS:
            return "invoice_overdue", INVOICE_OVERDUE_OFFSETS[self.reminder_type]
        return self.reminder_type, None

    async def handle(self, reminder: Reminder) -> bool:
        request = self._get_request(reminder.entity_id)
        if not is_request_valid_for_reminder(request, self.now):
            return False

        template_type, days = self._template()
        if days is not None and request.due_date is None:
            return False

        if not request.public_token:
            logger.warning(
                f"Request {request.id} has no public token, cannot build link"
            )
            return False

        channel = self.choose_channel(reminder.channel, request.recipient_phone)
        if channel == ReminderChannel.SMS:
            recipient = request.recipient_phone
        elif request.recipient_email:
            recipient = request.recipient_email
        else:
            return False

        profile = request.creator.profile if request.creator else None
        data = {
            "sender_name": (profile.display_name if profile else None) or "Someone",
            "amount": format_amount(request.amount_cents, request.currency),
            "request_link": f"{settings.PUBLIC_PAGE_URL.rstrip('/')}/r/{request.public_token}",
            "due_date": (
                request.due_date.strftime("%B %d, %Y") if request.due_date else ""
            ),
            "days": days or 0,
        }

        await self.deliver(channel, recipient, template_type, data)
        return True


def create_request_handler(
    db_session: Session, reminder_type: str, sender, now
) -> RequestReminderHandler:
    return RequestReminderHandler(db_session, reminder_type, sender, now)


REQUEST_HANDLER_TYPES = (
    ReminderType.REQUEST_UNOPENED_24H,
    ReminderType.REQUEST_UNOPENED_72H,
    ReminderType.REQUEST_UNPAID_3D,
    ReminderType.REQUEST_EXPIRING,
    *INVOICE_DUE_OFFSETS,
    *INVOICE_OVERDUE_OFFSETS,
)
