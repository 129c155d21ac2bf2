"""Email and SMS notifications."""

from .senders import EmailSender, SmsSender
from .service import NotificationService

__all__ = [
    "EmailSender",
    "SmsSender",
    "NotificationService",
]
