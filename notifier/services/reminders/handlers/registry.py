from datetime import datetime
from typing import Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from notifier.db.models import ReminderType
from notifier.services.reminders.constants import type_code
from notifier.services.senders import NotificationSender
from notifier.utils.logging import get_logger
from .base import BaseReminderHandler
from .engagement_handlers import (
    create_bank_setup_handler,
    create_no_subscribers_handler,
    create_onboarding_handler,
    create_payroll_ready_handler,
)
from .request_handlers import REQUEST_HANDLER_TYPES, create_request_handler
from .subscription_handlers import (
    create_payment_failed_handler,
    create_payout_handler,
    create_renewal_handler,
)

logger = get_logger()

HandlerFactory = Callable[
    [Session, str, NotificationSender, datetime], BaseReminderHandler
]


class ReminderHandlerRegistry:
    """Registry for reminder handler creation"""

    # Map reminder type codes to factory functions
    _factories: Dict[str, HandlerFactory] = {
        # Request and invoice reminders
        **{type_code(t): create_request_handler for t in REQUEST_HANDLER_TYPES},
        # Payouts and payroll
        ReminderType.PAYOUT_COMPLETED.value: create_payout_handler,
        ReminderType.PAYOUT_FAILED.value: create_payout_handler,
        ReminderType.PAYROLL_READY.value: create_payroll_ready_handler,
        # Onboarding and engagement
        ReminderType.ONBOARDING_INCOMPLETE_24H.value: create_onboarding_handler,
        ReminderType.ONBOARDING_INCOMPLETE_72H.value: create_onboarding_handler,
        ReminderType.BANK_SETUP_INCOMPLETE.value: create_bank_setup_handler,
        ReminderType.NO_SUBSCRIBERS_7D.value: create_no_subscribers_handler,
        # Subscription lifecycle
        ReminderType.SUBSCRIPTION_RENEWAL_7D.value: create_renewal_handler,
        ReminderType.SUBSCRIPTION_RENEWAL_3D.value: create_renewal_handler,
        ReminderType.SUBSCRIPTION_RENEWAL_1D.value: create_renewal_handler,
        ReminderType.SUBSCRIPTION_PAYMENT_FAILED.value: create_payment_failed_handler,
        ReminderType.SUBSCRIPTION_PAST_DUE.value: create_payment_failed_handler,
    }

    @classmethod
    def create_handler(
        cls,
        reminder_type: Union[ReminderType, str],
        db_session: Session,
        sender: NotificationSender,
        now: datetime,
    ) -> Optional[BaseReminderHandler]:
        """Create handler instance for a reminder type"""
        code = type_code(reminder_type)
        factory = cls._factories.get(code)
        if factory:
            return factory(db_session, code, sender, now)

        logger.warning(f"No handler registered for reminder type: {code}")
        return None

    @classmethod
    def register_handler(
        cls, reminder_type: Union[ReminderType, str], factory: HandlerFactory
    ):
        """Register a custom factory function for a reminder type"""
        code = type_code(reminder_type)
        cls._factories[code] = factory
        logger.info(f"Registered handler factory for reminder type: {code}")

    @classmethod
    def unregister_handler(cls, reminder_type: Union[ReminderType, str]):
        cls._factories.pop(type_code(reminder_type), None)

    @classmethod
    def list_registered_types(cls) -> list:
        """List all registered reminder type codes"""
        return list(cls._factories.keys())

    @classmethod
    def is_registered(cls, reminder_type: Union[ReminderType, str]) -> bool:
        """Check if reminder type is registered"""
        return type_code(reminder_type) in cls._factories
