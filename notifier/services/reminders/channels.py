from typing import Any, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.config.settings import settings
from notifier.db.models import Profile, ReminderChannel, ReminderType
from notifier.services.reminders.constants import (
    ALWAYS_SEND_TYPES,
    PAYMENT_ALERT_TYPES,
    SMS_ELIGIBLE_TYPES,
    SUBSCRIBER_ALERT_TYPES,
    type_code,
)
from notifier.utils.logging import get_logger

logger = get_logger()


def should_use_sms(country_code: Optional[str]) -> bool:
    """Whether a market prefers SMS for payment-critical messages"""
    if not country_code:
        return False
    return country_code.upper() in settings.SMS_PREFERRED_COUNTRIES


class ChannelRouter:
    """Channel selection at schedule time and the opt-out gate at dispatch time."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _get_profile(self, user_id: str) -> Optional[Profile]:
        return self.db.execute(
            select(Profile).where(Profile.user_id == user_id)
        ).scalar_one_or_none()

    async def get_best_channel(
        self, user_id: str, reminder_type: Union[ReminderType, str]
    ) -> ReminderChannel:
        """
        SMS only for SMS-eligible kinds, with SMS delivery enabled, for users
        whose profile country prefers SMS. Email otherwise.
        """
        if type_code(reminder_type) not in SMS_ELIGIBLE_TYPES:
            return ReminderChannel.EMAIL

        if not settings.sms_configured:
            return ReminderChannel.EMAIL

        profile = self._get_profile(user_id)
        if profile and should_use_sms(profile.country_code):
            return ReminderChannel.SMS

        return ReminderChannel.EMAIL

    async def check_notification_preferences(
        self,
        user_id: str,
        reminder_type: Union[ReminderType, str],
        channel: ReminderChannel,
    ) -> bool:
        """
        Evaluate the user's current opt-outs for a reminder about to go out.

        Returns:
            bool: True if the reminder may be sent
        """
        code = type_code(reminder_type)
        if code in ALWAYS_SEND_TYPES:
            return True

        profile = self._get_profile(user_id)
        prefs: Dict[str, Any] = (profile.notification_prefs if profile else None) or {}

        # Only an explicit False opts out; missing flags mean opted in
        if channel == ReminderChannel.EMAIL and prefs.get("email") is False:
            return False
        if channel == ReminderChannel.PUSH and prefs.get("push") is False:
            return False

        if code in PAYMENT_ALERT_TYPES and prefs.get("paymentAlerts") is False:
            return False
        if (
            code in SUBSCRIBER_ALERT_TYPES
            and prefs.get("subscriberAlerts") is False
        ):
            return False

        return True


def get_channel_router(db_session: Session) -> ChannelRouter:
    return ChannelRouter(db_session)
