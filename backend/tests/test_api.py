"""
HTTP-level tests: routing, auth, error bodies and the webhook flow.
"""

from datetime import datetime, timezone, timedelta

import pytest
from httpx import AsyncClient

from conftest import bearer, signed_webhook, webhook_event


def cart(category_id: int, quantity: int) -> dict:
    return {
        "items": [{"category_id": category_id, "quantity": quantity}],
        "customer": {"email": "buyer@example.com", "name": "Test Buyer"},
    }


async def checkout(client: AsyncClient, headers: dict, category_id: int, quantity: int) -> dict:
    response = await client.post("/api/v1/orders/", json=cart(category_id, quantity), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def pay(client: AsyncClient, checkout_body: dict) -> dict:
    body, headers = signed_webhook(
        webhook_event(checkout_body["payment"]["intent_id"], checkout_body["order"]["total_cents"])
    )
    response = await client.post("/api/v1/payments/webhook", content=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["cache"] == {"status": "disabled"}

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "order_transitions_total" in metrics.text


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_create_event_requires_admin(client: AsyncClient, auth_headers, admin_headers):
    starts = datetime.now(timezone.utc) + timedelta(days=10)
    payload = {
        "title": "Jazz Night",
        "venue": "Blue Room",
        "starts_at": starts.isoformat(),
        "ends_at": (starts + timedelta(hours=3)).isoformat(),
        "categories": [{"name": "Floor", "price_cents": 150000, "capacity": 50}],
    }

    forbidden = await client.post("/api/v1/events/", json=payload, headers=auth_headers)
    assert forbidden.status_code == 403

    created = await client.post("/api/v1/events/", json=payload, headers=admin_headers)
    assert created.status_code == 201
    body = created.json()
    assert body["categories"][0]["currency"] == "idr"
    assert body["categories"][0]["capacity"] == 50

    listed = await client.get("/api/v1/events/")
    assert listed.json()["total"] == 1


@pytest.mark.asyncio
async def test_checkout_requires_auth(client: AsyncClient, vip_id):
    response = await client.post("/api/v1/orders/", json=cart(vip_id, 1))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_checkout_returns_order_and_payment_handle(client: AsyncClient, auth_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 2)

    assert body["order"]["status"] == "pending_payment"
    assert body["order"]["subtotal_cents"] == 100000
    assert body["order"]["fees_cents"] == 10000
    assert body["order"]["total_cents"] == 110000
    assert body["payment"]["intent_id"] == body["order"]["payment_reference"]
    assert body["payment"]["client_secret"]


@pytest.mark.asyncio
async def test_domain_errors_have_typed_bodies(client: AsyncClient, auth_headers, vip_id):
    too_many = await client.post("/api/v1/orders/", json=cart(vip_id, 11), headers=auth_headers)
    assert too_many.status_code == 400
    assert too_many.json()["code"] == "INVALID_CART"

    missing = await client.post("/api/v1/orders/", json=cart(999999, 1), headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"

    await checkout(client, auth_headers, vip_id, 8)
    short = await client.post("/api/v1/orders/", json=cart(vip_id, 3), headers=bearer("user-2"))
    assert short.status_code == 409
    assert short.json()["code"] == "INSUFFICIENT_INVENTORY"
    assert "detail" in short.json()


@pytest.mark.asyncio
async def test_orders_are_private(client: AsyncClient, auth_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 1)
    order_id = body["order"]["id"]

    mine = await client.get(f"/api/v1/orders/{order_id}", headers=auth_headers)
    assert mine.status_code == 200

    theirs = await client.get(f"/api/v1/orders/{order_id}", headers=bearer("user-2"))
    assert theirs.status_code == 404


@pytest.mark.asyncio
async def test_cancel_endpoint(client: AsyncClient, auth_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 1)
    order_id = body["order"]["id"]

    cancelled = await client.post(f"/api/v1/orders/{order_id}/cancel", headers=auth_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    listed = await client.get("/api/v1/orders/", params={"status": "cancelled"}, headers=auth_headers)
    assert [o["id"] for o in listed.json()] == [order_id]


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client: AsyncClient, auth_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 1)
    payload, headers = signed_webhook(
        webhook_event(body["payment"]["intent_id"], body["order"]["total_cents"]), secret="not-the-secret"
    )

    response = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIGNATURE"

    status = await client.get(f"/api/v1/payments/{body['order']['id']}", headers=auth_headers)
    assert status.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_webhook_flow_issues_tickets_once(client: AsyncClient, auth_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 2)

    first = await pay(client, body)
    second = await pay(client, body)
    assert first == {"received": True, "outcome": "processed", "order_id": body["order"]["id"]}
    assert second["outcome"] == "already_processed"

    tickets = await client.get("/api/v1/tickets/", headers=auth_headers)
    assert tickets.status_code == 200
    assert len(tickets.json()) == 2

    status = await client.get(f"/api/v1/payments/{body['order']['id']}", headers=auth_headers)
    assert status.json()["status"] == "paid"


@pytest.mark.asyncio
async def test_gate_redeems_exactly_once(client: AsyncClient, auth_headers, staff_headers, vip_id):
    await pay(client, await checkout(client, auth_headers, vip_id, 1))
    code = (await client.get("/api/v1/tickets/", headers=auth_headers)).json()[0]["code"]

    customer_try = await client.post("/api/v1/tickets/redeem", json={"code": code}, headers=auth_headers)
    assert customer_try.status_code == 403

    check = await client.post("/api/v1/tickets/validate", json={"code": code}, headers=staff_headers)
    assert check.json()["valid"] is True
    context = check.json()["context"]
    assert context["event_title"] == "Test Concert"
    assert context["category_name"] == "VIP"
    assert context["order_status"] == "paid"
    assert context["customer_email"]

    first = await client.post(
        "/api/v1/tickets/redeem", json={"code": code, "gate_id": "north"}, headers=staff_headers
    )
    second = await client.post(
        "/api/v1/tickets/redeem", json={"code": code, "gate_id": "south"}, headers=staff_headers
    )
    assert first.json()["valid"] is True
    assert second.json()["valid"] is False
    assert second.json()["reason"] == "already_used"
    assert second.json()["used_at"] == first.json()["used_at"]


@pytest.mark.asyncio
async def test_refund_requires_admin(client: AsyncClient, auth_headers, admin_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 2)
    await pay(client, body)
    order_id = body["order"]["id"]

    forbidden = await client.post(f"/api/v1/payments/{order_id}/refund", json={}, headers=auth_headers)
    assert forbidden.status_code == 403

    refunded = await client.post(f"/api/v1/payments/{order_id}/refund", json={}, headers=admin_headers)
    assert refunded.status_code == 200
    assert refunded.json()["status"] == "refunded"
    assert refunded.json()["tickets_voided"] == 2

    again = await client.post(f"/api/v1/payments/{order_id}/refund", json={}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "ILLEGAL_TRANSITION"


@pytest.mark.asyncio
async def test_inventory_endpoints(client: AsyncClient, auth_headers, admin_headers, event_id, vip_id, ga_id):
    await checkout(client, auth_headers, vip_id, 3)

    snapshot = await client.get(f"/api/v1/events/{event_id}/inventory")
    assert snapshot.status_code == 200
    vip = next(c for c in snapshot.json()["categories"] if c["category_id"] == vip_id)
    assert (vip["held"], vip["sold"], vip["available"]) == (3, 0, 7)
    assert snapshot.json()["cached"] is False

    check = await client.post(
        "/api/v1/inventory/check",
        json={"items": [{"category_id": vip_id, "quantity": 8}, {"category_id": ga_id, "quantity": 1}]},
    )
    assert check.json()["all_available"] is False
    reasons = {r["category_id"]: r["reason"] for r in check.json()["results"]}
    assert reasons == {vip_id: "insufficient", ga_id: "ok"}

    disabled = await client.patch(
        f"/api/v1/inventory/categories/{ga_id}", json={"is_available": False}, headers=admin_headers
    )
    assert disabled.status_code == 200
    assert disabled.json()["is_available"] is False

    negative = await client.patch(
        f"/api/v1/inventory/categories/{vip_id}", json={"capacity": -1}, headers=admin_headers
    )
    assert negative.status_code == 422


@pytest.mark.asyncio
async def test_admin_sweep_and_stats(client: AsyncClient, auth_headers, admin_headers, event_id, vip_id):
    await pay(client, await checkout(client, auth_headers, vip_id, 2))
    await checkout(client, auth_headers, vip_id, 1)

    sweep = await client.post("/api/v1/admin/sweep", headers=admin_headers)
    assert sweep.json() == {"expired": 0, "reminded": 0}

    forbidden = await client.get("/api/v1/admin/stats", headers=auth_headers)
    assert forbidden.status_code == 403

    stats = (await client.get("/api/v1/admin/stats", params={"event_id": event_id}, headers=admin_headers)).json()
    assert stats["orders"]["counts"]["paid"] == 1
    assert stats["orders"]["counts"]["pending_payment"] == 1
    assert stats["orders"]["paid_revenue_cents"] == 110000
    assert stats["tickets"]["total"] == 2
    assert [c["name"] for c in stats["low_stock"]] == ["VIP"]


@pytest.mark.asyncio
async def test_order_tickets_visible_to_owner_only(client: AsyncClient, auth_headers, vip_id):
    body = await checkout(client, auth_headers, vip_id, 2)
    order_id = body["order"]["id"]

    before_payment = await client.get(f"/api/v1/orders/{order_id}/tickets", headers=auth_headers)
    assert before_payment.status_code == 200
    assert before_payment.json() == []

    await pay(client, body)
    tickets = await client.get(f"/api/v1/orders/{order_id}/tickets", headers=auth_headers)
    assert [t["order_id"] for t in tickets.json()] == [order_id, order_id]

    stranger = await client.get(f"/api/v1/orders/{order_id}/tickets", headers=bearer("user-2"))
    assert stranger.status_code == 404


@pytest.mark.asyncio
async def test_admin_sends_event_reminders(
    client: AsyncClient, auth_headers, admin_headers, notifier, event_id, vip_id, ga_id
):
    await pay(client, await checkout(client, auth_headers, vip_id, 1))
    await pay(client, await checkout(client, auth_headers, ga_id, 1))
    await checkout(client, auth_headers, ga_id, 1)  # still pending, not reminded

    forbidden = await client.post(f"/api/v1/admin/events/{event_id}/reminders", headers=auth_headers)
    assert forbidden.status_code == 403

    response = await client.post(f"/api/v1/admin/events/{event_id}/reminders", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"event_id": event_id, "sent": 2}
    assert notifier.kinds().count("event_reminder") == 2

    missing = await client.post("/api/v1/admin/events/99999/reminders", headers=admin_headers)
    assert missing.status_code == 404
