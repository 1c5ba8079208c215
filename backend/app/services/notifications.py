"""
User notifications.

Delivery is fire-and-forget: a failing notifier must never fail the webhook
that triggered it.
"""
import logging
from abc import ABC, abstractmethod

from app.models import User

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Sends a short message to a user."""

    @abstractmethod
    async def notify(self, user: User, subject: str, message: str) -> None:
        pass


class LogNotifier(Notifier):
    """Notifier that writes to the application log; stands in until an email provider is wired."""

    async def notify(self, user: User, subject: str, message: str) -> None:
        logger.info(f"Notification to {user.email}: {subject} - {message}")


async def send_notification(notifier: Notifier, user: User, subject: str, message: str) -> None:
    """Deliver a notification, logging and discarding any failure."""
    try:
        await notifier.notify(user, subject, message)
    except Exception as e:
        logger.warning(f"Failed to notify user {user.id}: {str(e)}", exc_info=True)
