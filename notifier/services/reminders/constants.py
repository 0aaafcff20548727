from enum import Enum
from typing import Union

from notifier.db.models import ReminderType


def type_code(reminder_type: Union[ReminderType, str]) -> str:
    """Stored code for a reminder kind"""
    if isinstance(reminder_type, Enum):
        return reminder_type.value
    return str(reminder_type)


# Reminder kind sets and offset tables are keyed by stored code

# Entity types referenced by reminder rows
ENTITY_REQUEST = "request"
ENTITY_SUBSCRIPTION = "subscription"
ENTITY_PAYMENT = "payment"
ENTITY_PAYROLL = "payroll"
ENTITY_USER = "user"

# Payment-critical kinds that may go out by SMS in SMS-preferred markets
SMS_ELIGIBLE_TYPES = frozenset(
    t.value
    for t in (
        ReminderType.INVOICE_DUE_1D,
        ReminderType.INVOICE_OVERDUE_1D,
        ReminderType.INVOICE_OVERDUE_7D,
        ReminderType.REQUEST_EXPIRING,
        ReminderType.PAYOUT_COMPLETED,
        ReminderType.PAYOUT_FAILED,
        ReminderType.BANK_SETUP_INCOMPLETE,
    )
)

# Gated by the paymentAlerts preference
PAYMENT_ALERT_TYPES = frozenset(
    t.value
    for t in (
        ReminderType.INVOICE_DUE_7D,
        ReminderType.INVOICE_DUE_3D,
        ReminderType.INVOICE_DUE_1D,
        ReminderType.INVOICE_OVERDUE_1D,
        ReminderType.INVOICE_OVERDUE_7D,
        ReminderType.PAYOUT_COMPLETED,
        ReminderType.PAYOUT_FAILED,
        ReminderType.REQUEST_EXPIRING,
    )
)

# Gated by the subscriberAlerts preference
SUBSCRIBER_ALERT_TYPES = frozenset(
    t.value
    for t in (
        ReminderType.REQUEST_UNOPENED_24H,
        ReminderType.REQUEST_UNOPENED_72H,
        ReminderType.REQUEST_UNPAID_3D,
    )
)

# System and compliance notices ignore user opt-outs. Renewal pre-notices
# are required by card network advance-notice rules.
ALWAYS_SEND_TYPES = frozenset(
    t.value
    for t in (
        ReminderType.ONBOARDING_INCOMPLETE_24H,
        ReminderType.ONBOARDING_INCOMPLETE_72H,
        ReminderType.BANK_SETUP_INCOMPLETE,
        ReminderType.NO_SUBSCRIBERS_7D,
        ReminderType.PAYROLL_READY,
        ReminderType.SUBSCRIPTION_RENEWAL_7D,
        ReminderType.SUBSCRIPTION_RENEWAL_3D,
        ReminderType.SUBSCRIPTION_RENEWAL_1D,
        ReminderType.SUBSCRIPTION_PAYMENT_FAILED,
        ReminderType.SUBSCRIPTION_PAST_DUE,
    )
)

REQUEST_UNOPENED_TYPES = (
    ReminderType.REQUEST_UNOPENED_24H.value,
    ReminderType.REQUEST_UNOPENED_72H.value,
)

SUBSCRIPTION_RENEWAL_OFFSETS = {
    ReminderType.SUBSCRIPTION_RENEWAL_7D.value: 7,
    ReminderType.SUBSCRIPTION_RENEWAL_3D.value: 3,
    ReminderType.SUBSCRIPTION_RENEWAL_1D.value: 1,
}

INVOICE_DUE_OFFSETS = {
    ReminderType.INVOICE_DUE_7D.value: 7,
    ReminderType.INVOICE_DUE_3D.value: 3,
    ReminderType.INVOICE_DUE_1D.value: 1,
}

INVOICE_OVERDUE_OFFSETS = {
    ReminderType.INVOICE_OVERDUE_1D.value: 1,
    ReminderType.INVOICE_OVERDUE_7D.value: 7,
}

ONBOARDING_OFFSETS_HOURS = {
    ReminderType.ONBOARDING_INCOMPLETE_24H.value: 24,
    ReminderType.ONBOARDING_INCOMPLETE_72H.value: 72,
}
