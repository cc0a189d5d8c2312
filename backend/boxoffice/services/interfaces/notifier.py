"""
Notification channel interface.
Delivery (email provider, queue, ...) is an external collaborator.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class NotificationMessage:
    kind: str  # order_confirmation, payment_reminder, event_reminder, ticket_delivery
    to: str
    subject: str
    body: str
    data: dict = field(default_factory=dict)


class Notifier(ABC):
    """
    Interface for outbound customer notifications.

    Implementations:
    - LogNotifier: writes the message to the structured log
    - WebhookNotifier: POSTs the message to a delivery service
    """

    @abstractmethod
    async def send(self, message: NotificationMessage) -> bool:
        """
        Deliver one message.

        Returns:
            True if the channel accepted the message
        """
        pass
