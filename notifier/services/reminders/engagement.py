from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notifier.db.models import (
    Payment,
    PaymentStatus,
    PaymentType,
    PayrollPeriod,
    Profile,
    ReminderType,
    Subscription,
    User,
)
from notifier.services.reminders.constants import (
    ENTITY_PAYROLL,
    ENTITY_USER,
    ONBOARDING_OFFSETS_HOURS,
)
from notifier.services.reminders.core import ReminderSchedulingService
from notifier.utils.datetime_utils import days_after, hours_after, resolve_now
from notifier.utils.logging import get_logger

logger = get_logger()


def has_bank_details(profile: Profile) -> bool:
    if profile.payment_provider == "paystack":
        return bool(profile.paystack_account_number)
    if profile.payment_provider == "stripe":
        return bool(profile.stripe_account_id)
    return False


def pending_earnings_cents(db_session: Session, user_id: str) -> int:
    """Net earnings from succeeded subscriber payments"""
    total = db_session.execute(
        select(func.coalesce(func.sum(Payment.net_cents), 0)).where(
            Payment.creator_id == user_id,
            Payment.status == PaymentStatus.SUCCEEDED,
            Payment.type.in_([PaymentType.RECURRING, PaymentType.ONE_TIME]),
        )
    ).scalar_one()
    return int(total or 0)


def subscriber_count(db_session: Session, user_id: str) -> int:
    return db_session.execute(
        select(func.count(Subscription.id)).where(Subscription.creator_id == user_id)
    ).scalar_one()


class EngagementReminderService:
    """Onboarding, bank setup, first-subscriber and payroll nudges."""

    def __init__(self, db_session: Session, scheduling: ReminderSchedulingService):
        self.db = db_session
        self.scheduling = scheduling

    def _get_user(self, user_id: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(User.id == user_id)
        ).scalar_one_or_none()

    async def schedule_onboarding_reminders(
        self, user_id: str, now: Optional[datetime] = None
    ) -> int:
        """
        Nudge a user without a profile at 24h and 72h after signup.

        Marks already in the past are due immediately, except that the 24h
        nudge is dropped once the 72h mark has passed.
        """
        now = resolve_now(now)
        user = self._get_user(user_id)
        if user is None or user.profile is not None:
            return 0

        signed_up_at = user.created_at or now
        last_mark = hours_after(signed_up_at, max(ONBOARDING_OFFSETS_HOURS.values()))
        past_last_mark = last_mark <= now

        scheduled = 0
        for reminder_type, hours in ONBOARDING_OFFSETS_HOURS.items():
            due_at = hours_after(signed_up_at, hours)
            if past_last_mark and due_at < last_mark:
                continue
            reminder = await self.scheduling.schedule_reminder(
                user_id=user_id,
                entity_type=ENTITY_USER,
                entity_id=user_id,
                reminder_type=reminder_type,
                scheduled_for=max(due_at, now),
            )
            if reminder is not None:
                scheduled += 1
        return scheduled

    async def cancel_onboarding_reminders(self, user_id: str) -> int:
        """Profile completed"""
        canceled = 0
        for reminder_type in ONBOARDING_OFFSETS_HOURS:
            canceled += await self.scheduling.cancel_reminder(
                ENTITY_USER, user_id, reminder_type
            )
        return canceled

    async def schedule_no_subscribers_reminder(
        self, user_id: str, now: Optional[datetime] = None
    ) -> bool:
        """Seven days after the page went live, if nobody has subscribed"""
        now = resolve_now(now)
        user = self._get_user(user_id)
        if user is None or user.profile is None:
            return False
        if subscriber_count(self.db, user_id) > 0:
            return False

        live_since = user.profile.created_at or now
        reminder = await self.scheduling.schedule_reminder(
            user_id=user_id,
            entity_type=ENTITY_USER,
            entity_id=user_id,
            reminder_type=ReminderType.NO_SUBSCRIBERS_7D,
            scheduled_for=max(days_after(live_since, 7), now),
        )
        return reminder is not None

    async def schedule_bank_setup_reminder(
        self, user_id: str, now: Optional[datetime] = None
    ) -> bool:
        """Earnings are waiting but no payout account is on file"""
        now = resolve_now(now)
        user = self._get_user(user_id)
        if user is None or user.profile is None:
            return False
        if has_bank_details(user.profile):
            return False

        reminder = await self.scheduling.schedule_reminder(
            user_id=user_id,
            entity_type=ENTITY_USER,
            entity_id=user_id,
            reminder_type=ReminderType.BANK_SETUP_INCOMPLETE,
            scheduled_for=now,
        )
        return reminder is not None

    async def schedule_payroll_ready_reminder(
        self, period_id: str, now: Optional[datetime] = None
    ) -> bool:
        now = resolve_now(now)
        period = self.db.execute(
            select(PayrollPeriod).where(PayrollPeriod.id == period_id)
        ).scalar_one_or_none()
        if period is None:
            return False

        reminder = await self.scheduling.schedule_reminder(
            user_id=period.user_id,
            entity_type=ENTITY_PAYROLL,
            entity_id=period_id,
            reminder_type=ReminderType.PAYROLL_READY,
            scheduled_for=now,
        )
        return reminder is not None


def get_engagement_reminder_service(
    db_session: Session, scheduling: ReminderSchedulingService
) -> EngagementReminderService:
    return EngagementReminderService(db_session, scheduling)
