"""
Collaborator factory.
Configures which payment gateway and notifier implementations to use.
"""

from boxoffice.core.config import settings
from boxoffice.infrastructure.http_gateway import HttpPaymentGateway
from boxoffice.infrastructure.webhook_notifier import WebhookNotifier
from boxoffice.services.interfaces.log_notifier import LogNotifier
from boxoffice.services.interfaces.mock_gateway import MockPaymentGateway
from boxoffice.services.interfaces.notifier import Notifier
from boxoffice.services.interfaces.payment_gateway import PaymentGateway


def build_payment_gateway() -> PaymentGateway:
    """
    Build the configured payment gateway.

    - mock: MockPaymentGateway (development, tests)
    - http: HttpPaymentGateway (provider REST API)

    Selected via the PAYMENT_GATEWAY env var.
    """
    if settings.PAYMENT_GATEWAY == 'http':
        return HttpPaymentGateway(
            api_url=settings.PAYMENT_API_URL,
            api_key=settings.PAYMENT_API_KEY,
            webhook_secret=settings.PAYMENT_WEBHOOK_SECRET,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        )
    return MockPaymentGateway(settings.PAYMENT_WEBHOOK_SECRET)


def build_notifier() -> Notifier:
    """Build the configured notifier. Selected via the NOTIFIER env var."""
    if settings.NOTIFIER == 'webhook':
        return WebhookNotifier(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_FROM)
    return LogNotifier()


# Singleton instances
_gateway: PaymentGateway = None
_notifier: Notifier = None


def get_payment_gateway() -> PaymentGateway:
    """Get payment gateway singleton. Usable as a FastAPI dependency."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway


def get_notifier() -> Notifier:
    """Get notifier singleton. Usable as a FastAPI dependency."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


async def close_collaborators() -> None:
    """Release HTTP clients held by the singletons."""
    global _gateway, _notifier
    for collaborator in (_gateway, _notifier):
        close = getattr(collaborator, 'close', None)
        if close is not None:
            await close()
    _gateway = None
    _notifier = None
