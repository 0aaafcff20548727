from .notification_sender import (
    NotificationSender,
    SendOutcome,
    get_notification_sender,
)

__all__ = ["NotificationSender", "SendOutcome", "get_notification_sender"]
