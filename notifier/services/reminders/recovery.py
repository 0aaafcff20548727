from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.orm import Session

from notifier.db.models import (
    PaymentRequest,
    Profile,
    Reminder,
    RequestStatus,
    SendMethod,
    Subscription,
    SubscriptionInterval,
    SubscriptionStatus,
    User,
)
from notifier.services.reminders.constants import (
    ENTITY_REQUEST,
    ENTITY_SUBSCRIPTION,
    ENTITY_USER,
)
from notifier.services.reminders.core import ReminderSchedulingService
from notifier.services.reminders.engagement import get_engagement_reminder_service
from notifier.services.reminders.request import get_request_reminder_service
from notifier.services.reminders.subscription import (
    get_subscription_reminder_service,
    subscription_period_entity_id,
)
from notifier.utils.datetime_utils import resolve_now
from notifier.utils.logging import get_logger

logger = get_logger()


def _has_reminders(entity_type: str, entity_id_column):
    return exists().where(
        Reminder.entity_type == entity_type,
        Reminder.entity_id == entity_id_column,
    )


class MissedReminderScanner:
    """
    Re-runs the domain schedulers for entities that should have a reminder
    chain but have no reminder rows at all. Safe to run any number of times.
    """

    def __init__(self, db_session: Session, scheduling: ReminderSchedulingService):
        self.db = db_session
        self.requests = get_request_reminder_service(db_session, scheduling)
        self.engagement = get_engagement_reminder_service(db_session, scheduling)
        self.subscriptions = get_subscription_reminder_service(db_session, scheduling)

    async def scan_and_schedule_missed_reminders(
        self, now: Optional[datetime] = None
    ) -> int:
        """
        Returns:
            int: Number of reminders scheduled
        """
        now = resolve_now(now)
        scheduled = 0
        scheduled += await self._scan_requests(now)
        scheduled += await self._scan_onboarding(now)
        scheduled += await self._scan_subscriptions(now)

        logger.info(f"Missed reminder scan complete: {scheduled} reminders scheduled")
        return scheduled

    async def _scan_requests(self, now: datetime) -> int:
        request_ids = self.db.execute(
            select(PaymentRequest.id).where(
                PaymentRequest.status == RequestStatus.SENT,
                PaymentRequest.send_method != SendMethod.LINK,
                or_(
                    PaymentRequest.recipient_email.is_not(None),
                    PaymentRequest.recipient_phone.is_not(None),
                ),
                or_(
                    PaymentRequest.token_expires_at.is_(None),
                    PaymentRequest.token_expires_at > now,
                ),
                ~_has_reminders(ENTITY_REQUEST, PaymentRequest.id),
            )
        ).scalars().all()

        scheduled = 0
        for request_id in request_ids:
            scheduled += await self.requests.schedule_request_reminders(request_id, now)
        if request_ids:
            logger.info(f"Recovered reminders for {len(request_ids)} requests")
        return scheduled

    async def _scan_onboarding(self, now: datetime) -> int:
        user_ids = self.db.execute(
            select(User.id).where(
                User.created_at <= now - timedelta(hours=24),
                ~exists().where(Profile.user_id == User.id),
                ~_has_reminders(ENTITY_USER, User.id),
            )
        ).scalars().all()

        scheduled = 0
        for user_id in user_ids:
            scheduled += await self.engagement.schedule_onboarding_reminders(user_id, now)
        if user_ids:
            logger.info(f"Recovered onboarding reminders for {len(user_ids)} users")
        return scheduled

    async def _scan_subscriptions(self, now: datetime) -> int:
        subscriptions = self.db.execute(
            select(Subscription).where(
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    Subscription.interval != SubscriptionInterval.ONE_TIME,
                    Subscription.cancel_at_period_end == False,
                    Subscription.current_period_end > now,
                )
            )
        ).scalars().all()

        scheduled = 0
        for subscription in subscriptions:
            period_entity_id = subscription_period_entity_id(subscription)
            has_any = self.db.execute(
                select(
                    exists().where(
                        Reminder.entity_type == ENTITY_SUBSCRIPTION,
                        Reminder.entity_id == period_entity_id,
                    )
                )
            ).scalar()
            if has_any:
                continue
            scheduled += await self.subscriptions.schedule_subscription_renewal_reminders(
                subscription.id, now
            )
        return scheduled


async def scan_and_schedule_missed_reminders(
    db_session: Session,
    scheduling: ReminderSchedulingService,
    now: Optional[datetime] = None,
) -> int:
    return await MissedReminderScanner(
        db_session, scheduling
    ).scan_and_schedule_missed_reminders(now)
