from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.db.models import (
    Payment,
    PaymentStatus,
    PaymentType,
    Reminder,
    ReminderStatus,
    ReminderType,
    Subscription,
    SubscriptionInterval,
    SubscriptionStatus,
)
from notifier.services.reminders.constants import (
    ENTITY_PAYMENT,
    ENTITY_SUBSCRIPTION,
    SUBSCRIPTION_RENEWAL_OFFSETS,
)
from notifier.services.reminders.core import ReminderSchedulingService
from notifier.utils.datetime_utils import days_before, resolve_now
from notifier.utils.logging import get_logger

logger = get_logger()

PERIOD_SEPARATOR = "@"


def subscription_period_entity_id(subscription: Subscription) -> str:
    """
    Entity id of a subscription's current billing period, e.g.
    ``<subscription_id>@2025-03-01``. Each period gets its own dedup keys so a
    renewal notice sent last period never blocks this period's notice.
    """
    if subscription.current_period_end is None:
        return subscription.id
    return (
        f"{subscription.id}{PERIOD_SEPARATOR}"
        f"{subscription.current_period_end.strftime('%Y-%m-%d')}"
    )


def parse_subscription_entity_id(entity_id: str) -> Tuple[str, Optional[str]]:
    """Split a period entity id into (subscription_id, period_end or None)"""
    subscription_id, _, period = entity_id.partition(PERIOD_SEPARATOR)
    return subscription_id, period or None


class SubscriptionReminderService:
    """Renewal pre-notices, dunning notices and payout notices."""

    def __init__(self, db_session: Session, scheduling: ReminderSchedulingService):
        self.db = db_session
        self.scheduling = scheduling

    def _get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        ).scalar_one_or_none()

    async def _cancel_stale_renewals(self, subscription_id: str, current: str) -> int:
        stale_ids = self.db.execute(
            select(Reminder.entity_id)
            .where(
                Reminder.entity_type == ENTITY_SUBSCRIPTION,
                Reminder.entity_id.startswith(
                    f"{subscription_id}{PERIOD_SEPARATOR}", autoescape=True
                ),
                Reminder.entity_id != current,
                Reminder.status == ReminderStatus.SCHEDULED,
                Reminder.type.in_(list(SUBSCRIPTION_RENEWAL_OFFSETS)),
            )
            .distinct()
        ).scalars().all()

        canceled = 0
        for entity_id in stale_ids:
            for reminder_type in SUBSCRIPTION_RENEWAL_OFFSETS:
                canceled += await self.scheduling.cancel_reminder(
                    ENTITY_SUBSCRIPTION, entity_id, reminder_type
                )
        return canceled

    async def schedule_subscription_renewal_reminders(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> int:
        """
        Schedule the T-7d/T-3d/T-1d renewal notices for the current period.

        Call after subscription creation or a successful renewal. One-time,
        inactive and cancel-pending subscriptions get none. Notices whose time
        has already passed are skipped.
        """
        now = resolve_now(now)
        subscription = self._get_subscription(subscription_id)

        if subscription is None:
            return 0
        if subscription.interval == SubscriptionInterval.ONE_TIME:
            return 0
        if subscription.status != SubscriptionStatus.ACTIVE:
            return 0
        if subscription.cancel_at_period_end:
            return 0
        if subscription.current_period_end is None:
            return 0

        entity_id = subscription_period_entity_id(subscription)
        await self._cancel_stale_renewals(subscription_id, entity_id)

        scheduled = 0
        for reminder_type, days in SUBSCRIPTION_RENEWAL_OFFSETS.items():
            notice_at = days_before(subscription.current_period_end, days)
            if notice_at <= now:
                continue
            reminder = await self.scheduling.schedule_reminder(
                user_id=subscription.subscriber_id,
                entity_type=ENTITY_SUBSCRIPTION,
                entity_id=entity_id,
                reminder_type=reminder_type,
                scheduled_for=notice_at,
            )
            if reminder is not None:
                scheduled += 1

        logger.info(
            f"Scheduled {scheduled} renewal reminders for subscription {subscription_id}"
        )
        return scheduled

    async def _schedule_immediate(
        self,
        subscription_id: str,
        reminder_type: ReminderType,
        now: Optional[datetime],
    ) -> bool:
        subscription = self._get_subscription(subscription_id)
        if subscription is None:
            return False

        reminder = await self.scheduling.schedule_reminder(
            user_id=subscription.subscriber_id,
            entity_type=ENTITY_SUBSCRIPTION,
            entity_id=subscription_period_entity_id(subscription),
            reminder_type=reminder_type,
            scheduled_for=resolve_now(now),
        )
        return reminder is not None

    async def schedule_payment_failed_reminder(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> bool:
        """A renewal charge failed; notify on the next processor run"""
        return await self._schedule_immediate(
            subscription_id, ReminderType.SUBSCRIPTION_PAYMENT_FAILED, now
        )

    async def schedule_past_due_reminder(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> bool:
        """The subscription was marked past due"""
        return await self._schedule_immediate(
            subscription_id, ReminderType.SUBSCRIPTION_PAST_DUE, now
        )

    async def cancel_subscription_reminders(self, subscription_id: str) -> int:
        """Cancel every scheduled reminder across all billing periods"""
        canceled = await self.scheduling.cancel_all_reminders_for_entity(
            ENTITY_SUBSCRIPTION, subscription_id
        )
        canceled += await self.scheduling.cancel_reminders_with_entity_prefix(
            ENTITY_SUBSCRIPTION, f"{subscription_id}{PERIOD_SEPARATOR}"
        )
        return canceled

    async def schedule_payout_reminder(
        self, payment_id: str, now: Optional[datetime] = None
    ) -> bool:
        """Tell the creator a payout completed or failed"""
        payment = self.db.execute(
            select(Payment).where(Payment.id == payment_id)
        ).scalar_one_or_none()
        if payment is None or payment.type != PaymentType.PAYOUT:
            return False

        if payment.status == PaymentStatus.SUCCEEDED:
            reminder_type = ReminderType.PAYOUT_COMPLETED
        elif payment.status == PaymentStatus.FAILED:
            reminder_type = ReminderType.PAYOUT_FAILED
        else:
            return False

        reminder = await self.scheduling.schedule_reminder(
            user_id=payment.creator_id,
            entity_type=ENTITY_PAYMENT,
            entity_id=payment_id,
            reminder_type=reminder_type,
            scheduled_for=resolve_now(now),
        )
        return reminder is not None


def get_subscription_reminder_service(
    db_session: Session, scheduling: ReminderSchedulingService
) -> SubscriptionReminderService:
    return SubscriptionReminderService(db_session, scheduling)
