from datetime import timedelta
from typing import Optional

from sqlalchemy import select

from notifier.db.models import (
    Payment,
    PaymentStatus,
    PaymentType,
    Reminder,
    ReminderChannel,
    ReminderType,
    Subscription,
    SubscriptionStatus,
    User,
)
from notifier.services.reminders.subscription import (
    parse_subscription_entity_id,
    subscription_period_entity_id,
)
from notifier.services.senders.templates import format_amount
from notifier.utils.manage_token import generate_manage_url
from .base import BaseReminderHandler


class SubscriptionReminderHandler(BaseReminderHandler):
    """Subscriber-facing notices about one billing period of a subscription."""

    def _get_subscription(self, entity_id: str) -> Optional[Subscription]:
        subscription_id, _ = parse_subscription_entity_id(entity_id)
        return self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        ).scalar_one_or_none()

    @staticmethod
    def is_current_period(subscription: Subscription, entity_id: str) -> bool:
        _, period = parse_subscription_entity_id(entity_id)
        if period is None:
            return True
        return subscription_period_entity_id(subscription) == entity_id

    def _base_data(self, subscription: Subscription) -> dict:
        profile = subscription.creator.profile if subscription.creator else None
        return {
            "provider_name": (profile.display_name if profile else None)
            or "a creator",
            # Fee-inclusive pricing is out of scope: subscribers pay the base amount
            "amount": format_amount(subscription.amount, subscription.currency),
            "manage_url": generate_manage_url(subscription.id),
        }


class SubscriptionRenewalHandler(SubscriptionReminderHandler):
    async def handle(self, reminder: Reminder) -> bool:
        subscription = self._get_subscription(reminder.entity_id)
        if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
            return False
        if subscription.cancel_at_period_end:
            return False
        # Renewed or rescheduled since: this notice belongs to an old period
        if not self.is_current_period(subscription, reminder.entity_id):
            return False

        renewal_date = subscription.current_period_end or self.now
        data = self._base_data(subscription)
        data["renewal_date"] = renewal_date.strftime("%B %d, %Y")

        await self.deliver(
            ReminderChannel.EMAIL,
            subscription.subscriber.email,
            "subscription_renewal",
            data,
        )
        return True


class SubscriptionPaymentFailedHandler(SubscriptionReminderHandler):
    async def handle(self, reminder: Reminder) -> bool:
        subscription = self._get_subscription(reminder.entity_id)
        if subscription is None:
            return False

        past_due = self.reminder_type == ReminderType.SUBSCRIPTION_PAST_DUE.value
        if past_due and subscription.status != SubscriptionStatus.PAST_DUE:
            return False

        data = self._base_data(subscription)
        if not past_due and subscription.status == SubscriptionStatus.ACTIVE:
            retry_at = self.now + timedelta(hours=24)
            data["retry_note"] = f"We will try again on {retry_at.strftime('%B %d, %Y')}."
        else:
            data["retry_note"] = "No further attempts will be made."

        await self.deliver(
            ReminderChannel.EMAIL,
            subscription.subscriber.email,
            "subscription_payment_failed",
            data,
        )
        return True


class PayoutReminderHandler(BaseReminderHandler):
    """Tells a creator about a payout outcome."""

    async def handle(self, reminder: Reminder) -> bool:
        expected_status = (
            PaymentStatus.SUCCEEDED
            if self.reminder_type == ReminderType.PAYOUT_COMPLETED.value
            else PaymentStatus.FAILED
        )
        payment = self.db.execute(
            select(Payment).where(Payment.id == reminder.entity_id)
        ).scalar_one_or_none()
        if (
            payment is None
            or payment.type != PaymentType.PAYOUT
            or payment.status != expected_status
        ):
            return False

        user = self.db.execute(
            select(User).where(User.id == payment.creator_id)
        ).scalar_one_or_none()
        if user is None or user.profile is None:
            return False

        profile = user.profile
        account = profile.paystack_account_number
        data = {
            "display_name": profile.display_name,
            "amount": format_amount(payment.amount_cents, payment.currency),
            "bank_suffix": f" to the account ending {account[-4:]}" if account else "",
        }

        channel = self.choose_channel(reminder.channel, profile.phone)
        recipient = profile.phone if channel == ReminderChannel.SMS else user.email
        await self.deliver(channel, recipient, self.reminder_type, data)
        return True


def create_renewal_handler(db_session, reminder_type, sender, now):
    return SubscriptionRenewalHandler(db_session, reminder_type, sender, now)


def create_payment_failed_handler(db_session, reminder_type, sender, now):
    return SubscriptionPaymentFailedHandler(db_session, reminder_type, sender, now)


def create_payout_handler(db_session, reminder_type, sender, now):
    return PayoutReminderHandler(db_session, reminder_type, sender, now)
