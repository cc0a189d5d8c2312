"""
HTTP payment gateway - provider REST API over httpx.

The provider is expected to expose:
    POST {PAYMENT_API_URL}/payment_intents   -> {"id", "client_secret"}
    POST {PAYMENT_API_URL}/payment_intents/{id}/cancel
    POST {PAYMENT_API_URL}/refunds           -> {"id"}
and to sign webhook bodies with HMAC-SHA256 of PAYMENT_WEBHOOK_SECRET.
"""

import httpx

from boxoffice.core.errors import ExternalDependencyError
from boxoffice.core.logging import get_logger
from boxoffice.services.interfaces.mock_gateway import MockPaymentGateway
from boxoffice.services.interfaces.payment_gateway import CustomerContact, PaymentIntent

logger = get_logger(__name__)


class HttpPaymentGateway(MockPaymentGateway):
    """
    Real provider client.

    Webhook verification is shared with the mock gateway (same signing
    scheme); intents, cancellations and refunds go over the wire.
    """

    name = "http"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        webhook_secret: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(webhook_secret)
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def _post(self, path: str, payload: dict, idempotency_key: str | None = None) -> dict:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = await self._client.post(f"{self.api_url}{path}", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "payment_provider_rejected",
                path=path,
                status_code=e.response.status_code,
            )
            raise ExternalDependencyError("payment", f"Payment provider returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("payment_provider_unreachable", path=path, error=str(e))
            raise ExternalDependencyError("payment", "Payment provider is unreachable")
        return response.json()

    async def create_intent(
        self,
        order_id: int,
        amount: int,
        currency: str,
        customer: CustomerContact,
        attempt: int = 1,
    ) -> PaymentIntent:
        body = await self._post(
            "/payment_intents",
            {
                "amount": amount,
                "currency": currency,
                "receipt_email": customer.email,
                "metadata": {"order_id": str(order_id), "customer_name": customer.name},
            },
            idempotency_key=f"order-{order_id}-{amount}-{attempt}",
        )
        return PaymentIntent(intent_id=body["id"], client_secret=body["client_secret"])

    async def cancel_intent(self, intent_id: str) -> None:
        await self._post(f"/payment_intents/{intent_id}/cancel", {}, idempotency_key=f"cancel-{intent_id}")

    async def refund(self, intent_id: str, amount: int, idempotency_key: str) -> str:
        body = await self._post(
            "/refunds",
            {"payment_intent": intent_id, "amount": amount},
            idempotency_key=idempotency_key,
        )
        return body["id"]

    async def close(self) -> None:
        await self._client.aclose()
