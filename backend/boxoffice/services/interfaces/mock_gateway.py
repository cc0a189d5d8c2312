"""
Mock payment gateway - no external calls.
Intents and refunds are generated locally; webhooks are HMAC-SHA256 signed
with PAYMENT_WEBHOOK_SECRET so the webhook path is exercised end to end.
"""

import base64
import hashlib
import hmac
import json
import uuid

from boxoffice.core.errors import InvalidSignatureError
from boxoffice.services.interfaces.payment_gateway import (
    CustomerContact,
    PaymentGateway,
    PaymentIntent,
)

SIGNATURE_HEADER = "x-payment-signature"


def sign_payload(payload: bytes, secret: str) -> str:
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


class MockPaymentGateway(PaymentGateway):
    """
    Local stand-in for the payment provider.

    Use when:
    - Developing without provider credentials
    - Running the test suite
    """

    name = "mock"

    def __init__(self, webhook_secret: str):
        self.webhook_secret = webhook_secret
        self.refunds: dict[str, str] = {}
        self.canceled: set[str] = set()

    async def create_intent(
        self,
        order_id: int,
        amount: int,
        currency: str,
        customer: CustomerContact,
        attempt: int = 1,
    ) -> PaymentIntent:
        intent_id = f"pi_mock_{uuid.uuid4().hex}"
        return PaymentIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
        )

    async def refund(self, intent_id: str, amount: int, idempotency_key: str) -> str:
        """Same idempotency key, same refund reference."""
        if idempotency_key not in self.refunds:
            self.refunds[idempotency_key] = f"re_mock_{uuid.uuid4().hex}"
        return self.refunds[idempotency_key]

    async def cancel_intent(self, intent_id: str) -> None:
        self.canceled.add(intent_id)

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        signature = headers.get(SIGNATURE_HEADER)
        expected = sign_payload(payload, self.webhook_secret)
        if not signature or not hmac.compare_digest(expected, signature):
            raise InvalidSignatureError("Invalid webhook signature")
        try:
            return json.loads(payload.decode())
        except json.JSONDecodeError:
            raise InvalidSignatureError("Webhook body is not valid JSON")
