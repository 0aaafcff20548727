from typing import Optional

from sqlalchemy import select

from notifier.config.settings import settings
from notifier.db.models import (
    PayrollPeriod,
    Reminder,
    ReminderChannel,
    ReminderType,
    User,
)
from notifier.services.reminders.engagement import (
    has_bank_details,
    pending_earnings_cents,
    subscriber_count,
)
from notifier.services.senders.templates import format_amount
from .base import BaseReminderHandler


class UserReminderHandler(BaseReminderHandler):
    def _get_user(self, user_id: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(User.id == user_id)
        ).scalar_one_or_none()


class OnboardingIncompleteHandler(UserReminderHandler):
    async def handle(self, reminder: Reminder) -> bool:
        user = self._get_user(reminder.entity_id)
        # Profile created since scheduling: onboarding is done
        if user is None or user.profile is not None:
            return False

        is_second = self.reminder_type == ReminderType.ONBOARDING_INCOMPLETE_72H.value
        data = {
            "headline": (
                "Your page is almost ready"
                if is_second
                else "Finish setting up your page"
            ),
            "onboarding_link": f"{settings.PUBLIC_PAGE_URL.rstrip('/')}/onboarding",
        }
        await self.deliver(ReminderChannel.EMAIL, user.email, "onboarding_incomplete", data)
        return True


class BankSetupIncompleteHandler(UserReminderHandler):
    async def handle(self, reminder: Reminder) -> bool:
        user = self._get_user(reminder.entity_id)
        if user is None or user.profile is None:
            return False

        profile = user.profile
        if has_bank_details(profile):
            return False

        pending = pending_earnings_cents(self.db, user.id)
        if pending == 0:
            return False

        channel = self.choose_channel(reminder.channel, profile.phone)
        recipient = profile.phone if channel == ReminderChannel.SMS else user.email
        data = {
            "display_name": profile.display_name,
            "amount": format_amount(pending, profile.currency),
        }
        await self.deliver(channel, recipient, "bank_setup_incomplete", data)
        return True


class NoSubscribersHandler(UserReminderHandler):
    async def handle(self, reminder: Reminder) -> bool:
        user = self._get_user(reminder.entity_id)
        if user is None or user.profile is None:
            return False
        if subscriber_count(self.db, user.id) > 0:
            return False

        profile = user.profile
        share_url = (
            profile.share_url
            or f"{settings.PUBLIC_PAGE_URL.rstrip('/')}/{profile.username}"
        )
        data = {"display_name": profile.display_name, "share_url": share_url}
        await self.deliver(ReminderChannel.EMAIL, user.email, "no_subscribers", data)
        return True


class PayrollReadyHandler(BaseReminderHandler):
    async def handle(self, reminder: Reminder) -> bool:
        period = self.db.execute(
            select(PayrollPeriod).where(PayrollPeriod.id == reminder.entity_id)
        ).scalar_one_or_none()
        if period is None or period.user is None or period.user.profile is None:
            return False

        data = {
            "display_name": period.user.profile.display_name,
            "period_start": period.period_start.strftime("%B %d, %Y"),
            "period_end": period.period_end.strftime("%B %d, %Y"),
            "amount": format_amount(period.net_cents, period.currency),
        }
        await self.deliver(ReminderChannel.EMAIL, period.user.email, "payroll_ready", data)
        return True


def create_onboarding_handler(db_session, reminder_type, sender, now):
    return OnboardingIncompleteHandler(db_session, reminder_type, sender, now)


def create_bank_setup_handler(db_session, reminder_type, sender, now):
    return BankSetupIncompleteHandler(db_session, reminder_type, sender, now)


def create_no_subscribers_handler(db_session, reminder_type, sender, now):
    return NoSubscribersHandler(db_session, reminder_type, sender, now)


def create_payroll_ready_handler(db_session, reminder_type, sender, now):
    return PayrollReadyHandler(db_session, reminder_type, sender, now)
