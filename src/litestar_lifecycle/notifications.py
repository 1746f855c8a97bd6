"""Notification messages and delivery helpers.

Notification delivery is a component-local concern: a failed delivery is logged
and never fails the business operation that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from litestar_lifecycle.core.protocols import NotificationService

__all__ = [
    "LoggingNotificationService",
    "Notification",
    "NotificationPriority",
    "notify_safely",
    "send_rich_message_safely",
]

logger = logging.getLogger(__name__)


class NotificationPriority(StrEnum):
    """Urgency of a notification."""

    LOW = auto()
    NORMAL = auto()
    HIGH = auto()


@dataclass
class Notification:
    """A message for one recipient.

    Attributes:
        recipient_id: User to notify.
        title: Short subject line.
        message: Body text.
        priority: Delivery urgency.
        link_url: Optional deep link to the item concerned.
    """

    recipient_id: int
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    link_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the notification as a plain mapping."""
        return asdict(self)


class LoggingNotificationService:
    """Notification service that only writes to the log.

    This is the default when the host application does not provide a delivery channel.
    """

    async def send_notification(self, notification: Notification) -> None:
        logger.info(
            "Notification to user %s: %s (%s)",
            notification.recipient_id,
            notification.title,
            notification.priority,
        )

    async def send_rich_message(self, context: dict[str, Any]) -> None:
        logger.info("Rich message: %s", context.get("title", context))


async def notify_safely(service: NotificationService | None, notification: Notification) -> bool:
    """Send a notification, logging instead of raising on failure.

    Args:
        service: The notification service, or ``None`` to skip delivery.
        notification: The message to send.

    Returns:
        True if the service accepted the notification.
    """
    if service is None:
        return False
    try:
        await service.send_notification(notification)
    except Exception:
        logger.warning("Failed to notify user %s: %s", notification.recipient_id, notification.title, exc_info=True)
        return False
    return True


async def send_rich_message_safely(service: NotificationService | None, context: dict[str, Any]) -> bool:
    """Send a rich message, logging instead of raising on failure."""
    if service is None:
        return False
    try:
        await service.send_rich_message(context)
    except Exception:
        logger.warning("Failed to send rich message: %s", context.get("title"), exc_info=True)
        return False
    return True
