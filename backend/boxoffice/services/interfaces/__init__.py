"""
Service interfaces for dependency inversion.
Allows swapping collaborator implementations without changing business logic.
"""

from .payment_gateway import CustomerContact, PaymentGateway, PaymentIntent
from .mock_gateway import MockPaymentGateway
from .notifier import NotificationMessage, Notifier
from .log_notifier import LogNotifier

__all__ = [
    'CustomerContact', 'PaymentGateway', 'PaymentIntent', 'MockPaymentGateway',
    'NotificationMessage', 'Notifier', 'LogNotifier',
]
