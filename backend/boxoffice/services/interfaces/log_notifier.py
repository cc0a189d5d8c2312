"""
Log-only notifier - no delivery.
"""

from boxoffice.core.logging import get_logger
from boxoffice.services.interfaces.notifier import NotificationMessage, Notifier

logger = get_logger(__name__)


class LogNotifier(Notifier):
    """
    Writes notifications to the log instead of delivering them.

    Use when:
    - Local development
    - No delivery service is configured
    """

    async def send(self, message: NotificationMessage) -> bool:
        logger.info(
            "notification_logged",
            kind=message.kind,
            to=message.to,
            subject=message.subject,
        )
        return True
