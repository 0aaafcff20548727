from typing import Any, Dict, Optional, Union

import httpx
from pydantic import BaseModel

from notifier.config.settings import settings
from notifier.db.models import ReminderChannel
from notifier.services.senders.templates import render_template
from notifier.utils.errors import NotificationDeliveryError
from notifier.utils.logging import get_logger

logger = get_logger()


class SendOutcome(BaseModel):
    """Provider acknowledgement for one delivered message"""

    channel: ReminderChannel
    recipient: str
    template_type: str
    provider: str
    message_id: Optional[str] = None


class NotificationSender:
    """Delivers rendered templates over email (Resend) and SMS (Bird)."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def send(
        self,
        channel: Union[ReminderChannel, str],
        recipient: str,
        template_type: str,
        data: Dict[str, Any],
    ) -> SendOutcome:
        channel = ReminderChannel(channel)

        try:
            message = render_template(template_type, channel, data)
        except KeyError as e:
            raise NotificationDeliveryError(
                str(e), error_code="TEMPLATE_NOT_FOUND"
            ) from e

        if channel == ReminderChannel.EMAIL:
            message_id = await self._send_email(recipient, message)
            provider = "resend"
        elif channel == ReminderChannel.SMS:
            message_id = await self._send_sms(recipient, message["body"])
            provider = "bird"
        else:
            raise NotificationDeliveryError(
                f"Channel {channel.value} is not deliverable",
                error_code="CHANNEL_UNSUPPORTED",
            )

        logger.info(
            f"Delivered {template_type} via {channel.value} (provider={provider})"
        )
        return SendOutcome(
            channel=channel,
            recipient=recipient,
            template_type=template_type,
            provider=provider,
            message_id=message_id,
        )

    async def _send_email(self, recipient: str, message: Dict[str, str]) -> Optional[str]:
        if not settings.RESEND_API_KEY:
            raise NotificationDeliveryError(
                "Email provider is not configured", error_code="EMAIL_NOT_CONFIGURED"
            )

        payload = {
            "from": settings.EMAIL_FROM,
            "to": [recipient],
            "subject": message["subject"],
            "text": message["body"],
        }
        response = await self._post(
            f"{settings.RESEND_API_URL.rstrip('/')}/emails",
            headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
            payload=payload,
        )
        return response.get("id")

    async def _send_sms(self, phone: str, text: str) -> Optional[str]:
        if not settings.sms_configured:
            raise NotificationDeliveryError(
                "SMS delivery is not enabled", error_code="SMS_DISABLED"
            )

        url = (
            f"{settings.BIRD_API_URL.rstrip('/')}/workspaces/"
            f"{settings.BIRD_WORKSPACE_ID}/channels/{settings.BIRD_CHANNEL_ID}/messages"
        )
        payload = {
            "receiver": {"contacts": [{"identifierValue": phone}]},
            "body": {"type": "text", "text": {"text": text}},
        }
        response = await self._post(
            url,
            headers={"Authorization": f"AccessKey {settings.BIRD_ACCESS_KEY}"},
            payload=payload,
        )
        return response.get("id")

    async def _post(
        self, url: str, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url, headers=headers, json=payload, timeout=self.timeout
                )
        except httpx.RequestError as e:
            raise NotificationDeliveryError(
                f"Provider request failed: {e}", error_code="PROVIDER_UNREACHABLE"
            ) from e

        if response.status_code >= 300:
            raise NotificationDeliveryError(
                f"Provider rejected message: {response.status_code} - {response.text}",
                error_code="PROVIDER_REJECTED",
            )

        try:
            return response.json()
        except ValueError:
            return {}


notification_sender = NotificationSender()


def get_notification_sender() -> NotificationSender:
    """Dependency to get notification sender instance"""
    return notification_sender
