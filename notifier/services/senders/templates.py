from typing import Any, Dict

from notifier.db.models import ReminderChannel
from notifier.utils.logging import get_logger

logger = get_logger()

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "UGX", "XAF", "XOF"}


def format_amount(amount_cents: int, currency: str) -> str:
    """Render minor units as a human amount, e.g. ``USD 12.50``"""
    currency = (currency or "USD").upper()
    if currency in ZERO_DECIMAL_CURRENCIES:
        return f"{currency} {amount_cents:,}"
    return f"{currency} {amount_cents / 100:,.2f}"


# template type -> channel -> parts
TEMPLATES: Dict[str, Dict[str, Dict[str, str]]] = {
    "request_unopened_24h": {
        "email": {
            "subject": "{sender_name} sent you a request",
            "body": "Hi,\n\n{sender_name} sent you a request that is still waiting "
            "for you. You can view it here: {request_link}",
        },
        "sms": {"body": "{sender_name} sent you a request. View it: {request_link}"},
    },
    "request_unopened_72h": {
        "email": {
            "subject": "Reminder: {sender_name} is waiting on your response",
            "body": "Hi,\n\n{sender_name} is still waiting on your response to "
            "their request. View it here: {request_link}",
        },
        "sms": {
            "body": "Reminder: {sender_name} is waiting on your response. {request_link}"
        },
    },
    "request_unpaid_3d": {
        "email": {
            "subject": "Your payment to {sender_name} is still pending",
            "body": "Hi,\n\nYou viewed the request from {sender_name} for {amount} "
            "but it has not been paid yet. Complete it here: {request_link}",
        },
        "sms": {
            "body": "Your payment of {amount} to {sender_name} is still pending. "
            "{request_link}"
        },
    },
    "request_expiring": {
        "email": {
            "subject": "The request from {sender_name} expires soon",
            "body": "Hi,\n\nThe request from {sender_name} expires within 24 hours. "
            "Respond here before it closes: {request_link}",
        },
        "sms": {
            "body": "The request from {sender_name} expires in 24h. {request_link}"
        },
    },
    "invoice_due": {
        "email": {
            "subject": "Invoice from {sender_name} due in {days} day(s)",
            "body": "Hi,\n\nYour invoice of {amount} from {sender_name} is due on "
            "{due_date}. Pay here: {request_link}",
        },
        "sms": {
            "body": "Invoice of {amount} from {sender_name} is due in {days} day(s). "
            "{request_link}"
        },
    },
    "invoice_overdue": {
        "email": {
            "subject": "Invoice from {sender_name} is {days} day(s) overdue",
            "body": "Hi,\n\nYour invoice of {amount} from {sender_name} was due on "
            "{due_date} and is now {days} day(s) overdue. Pay here: {request_link}",
        },
        "sms": {
            "body": "Invoice of {amount} from {sender_name} is {days} day(s) overdue. "
            "{request_link}"
        },
    },
    "payout_completed": {
        "email": {
            "subject": "Your payout of {amount} is on its way",
            "body": "Hi {display_name},\n\nYour payout of {amount} has been sent"
            "{bank_suffix}.",
        },
        "sms": {"body": "Your payout of {amount} has been sent."},
    },
    "payout_failed": {
        "email": {
            "subject": "Your payout of {amount} failed",
            "body": "Hi {display_name},\n\nWe could not send your payout of {amount}. "
            "Please check your bank details.",
        },
        "sms": {"body": "Your payout of {amount} failed. Check your bank details."},
    },
    "payroll_ready": {
        "email": {
            "subject": "Your pay statement for {period_start} - {period_end} is ready",
            "body": "Hi {display_name},\n\nYour pay statement for {period_start} to "
            "{period_end} is ready. Net earnings: {amount}.",
        },
    },
    "onboarding_incomplete": {
        "email": {
            "subject": "{headline}",
            "body": "Hi,\n\nYou are a few steps away from getting paid. Finish "
            "setting up your page: {onboarding_link}",
        },
    },
    "bank_setup_incomplete": {
        "email": {
            "subject": "You have {amount} waiting for you",
            "body": "Hi {display_name},\n\nYou have {amount} in earnings waiting. "
            "Add your bank details to get paid.",
        },
        "sms": {"body": "You have {amount} waiting. Add your bank details to get paid."},
    },
    "no_subscribers": {
        "email": {
            "subject": "Share your page to get your first subscriber",
            "body": "Hi {display_name},\n\nYour page is live but has no subscribers "
            "yet. Share it: {share_url}",
        },
    },
    "subscription_renewal": {
        "email": {
            "subject": "Your subscription to {provider_name} renews on {renewal_date}",
            "body": "Hi,\n\nYour subscription to {provider_name} renews on "
            "{renewal_date} for {amount}. Manage or cancel it here: {manage_url}",
        },
    },
    "subscription_payment_failed": {
        "email": {
            "subject": "Your payment to {provider_name} failed",
            "body": "Hi,\n\nWe could not charge {amount} for your subscription to "
            "{provider_name}. {retry_note} Update your payment details: {manage_url}",
        },
    },
}


def render_template(
    template_type: str, channel: ReminderChannel, data: Dict[str, Any]
) -> Dict[str, str]:
    """
    Build subject/body for a template type and channel.

    Channels without their own variant fall back to the email copy. A missing
    placeholder is logged and the raw template text is returned.
    """
    variants = TEMPLATES.get(template_type)
    if not variants:
        raise KeyError(f"Unknown template type: {template_type}")

    parts = variants.get(channel.value) or variants["email"]
    subject = parts.get("subject", "")
    body = parts["body"]

    try:
        return {"subject": subject.format(**data), "body": body.format(**data)}
    except KeyError as e:
        logger.error(f"Template error for {template_type}: missing {e}")
        return {"subject": subject, "body": body}
