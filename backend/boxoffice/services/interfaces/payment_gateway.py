"""
Payment gateway interface.
Allows swapping between the mock provider and a real HTTP provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: str


@dataclass(frozen=True)
class CustomerContact:
    email: str
    name: str


class PaymentGateway(ABC):
    """
    Interface for the external payment provider.

    Implementations:
    - MockPaymentGateway: local intents, HMAC-signed webhooks
    - HttpPaymentGateway: provider REST API over httpx
    """

    name: str = "gateway"

    @abstractmethod
    async def create_intent(
        self,
        order_id: int,
        amount: int,
        currency: str,
        customer: CustomerContact,
        attempt: int = 1,
    ) -> PaymentIntent:
        """
        Open a payment intent for an order.

        Args:
            order_id: Order being paid
            amount: Amount in minor currency units
            currency: ISO currency code
            customer: Contact snapshot forwarded to the provider
            attempt: 1 for checkout, incremented by each payment retry so
                the provider opens a new intent instead of replaying one

        Raises:
            ExternalDependencyError if the provider is unreachable or refuses
        """
        pass

    @abstractmethod
    async def refund(self, intent_id: str, amount: int, idempotency_key: str) -> str:
        """
        Refund (part of) a captured intent.

        Returns:
            Provider refund reference
        """
        pass

    @abstractmethod
    async def cancel_intent(self, intent_id: str) -> None:
        """Cancel an intent that has not been captured. Best effort."""
        pass

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        """
        Authenticate a webhook body and decode it.

        Raises:
            InvalidSignatureError if the signature does not match
        """
        pass
