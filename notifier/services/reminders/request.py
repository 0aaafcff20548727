from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.db.models import PaymentRequest, ReminderType, SendMethod
from notifier.services.reminders.constants import (
    ENTITY_REQUEST,
    INVOICE_DUE_OFFSETS,
    INVOICE_OVERDUE_OFFSETS,
    REQUEST_UNOPENED_TYPES,
)
from notifier.services.reminders.core import (
    ReminderSchedulingService,
    is_request_valid_for_reminder,
)
from notifier.utils.datetime_utils import days_after, days_before, hours_after, resolve_now
from notifier.utils.logging import get_logger

logger = get_logger()


class RequestReminderService:
    """Reminders for payment requests and invoices."""

    def __init__(self, db_session: Session, scheduling: ReminderSchedulingService):
        self.db = db_session
        self.scheduling = scheduling

    def _get_request(self, request_id: str) -> Optional[PaymentRequest]:
        return self.db.execute(
            select(PaymentRequest).where(PaymentRequest.id == request_id)
        ).scalar_one_or_none()

    async def schedule_request_reminders(
        self, request_id: str, now: Optional[datetime] = None
    ) -> int:
        """
        Schedule the reminder chain for a request that was just sent.

        Unopened nudges at +24h/+72h, an expiry warning 24h before the link
        expires, and for invoices the due (T-7d/-3d/-1d) and overdue
        (T+1d/+7d) notices. Pre-due notices already in the past are skipped.

        Returns:
            int: Number of reminders scheduled
        """
        now = resolve_now(now)
        request = self._get_request(request_id)

        if request is None:
            return 0
        if request.send_method == SendMethod.LINK:
            logger.info(f"Skipping reminders for request {request_id}: sent as link")
            return 0
        if not request.recipient_email and not request.recipient_phone:
            return 0
        if not is_request_valid_for_reminder(request, now):
            logger.info(f"Skipping reminders for request {request_id}: not awaiting response")
            return 0

        user_id = request.creator_id
        planned = [
            (ReminderType.REQUEST_UNOPENED_24H, hours_after(now, 24)),
            (ReminderType.REQUEST_UNOPENED_72H, hours_after(now, 72)),
        ]

        if request.token_expires_at:
            expiring_at = request.token_expires_at - timedelta(hours=24)
            if expiring_at > now:
                planned.append((ReminderType.REQUEST_EXPIRING, expiring_at))

        if request.due_date:
            for reminder_type, days in INVOICE_DUE_OFFSETS.items():
                due_at = days_before(request.due_date, days)
                if due_at > now:
                    planned.append((reminder_type, due_at))
            for reminder_type, days in INVOICE_OVERDUE_OFFSETS.items():
                planned.append((reminder_type, days_after(request.due_date, days)))

        scheduled = 0
        for reminder_type, scheduled_for in planned:
            reminder = await self.scheduling.schedule_reminder(
                user_id=user_id,
                entity_type=ENTITY_REQUEST,
                entity_id=request_id,
                reminder_type=reminder_type,
                scheduled_for=scheduled_for,
            )
            if reminder is not None:
                scheduled += 1

        logger.info(f"Scheduled {scheduled} reminders for request {request_id}")
        return scheduled

    async def schedule_request_unpaid_reminder(
        self, request_id: str, now: Optional[datetime] = None
    ) -> bool:
        """The recipient opened the request: swap unopened nudges for an unpaid one"""
        now = resolve_now(now)
        request = self._get_request(request_id)
        if not is_request_valid_for_reminder(request, now):
            return False

        for reminder_type in REQUEST_UNOPENED_TYPES:
            await self.scheduling.cancel_reminder(ENTITY_REQUEST, request_id, reminder_type)

        reminder = await self.scheduling.schedule_reminder(
            user_id=request.creator_id,
            entity_type=ENTITY_REQUEST,
            entity_id=request_id,
            reminder_type=ReminderType.REQUEST_UNPAID_3D,
            scheduled_for=days_after(now, 3),
        )
        return reminder is not None

    async def cancel_request_reminders(self, request_id: str) -> int:
        """The request was answered (paid, declined, accepted or expired)"""
        return await self.scheduling.cancel_all_reminders_for_entity(
            ENTITY_REQUEST, request_id
        )


def get_request_reminder_service(
    db_session: Session, scheduling: ReminderSchedulingService
) -> RequestReminderService:
    return RequestReminderService(db_session, scheduling)
