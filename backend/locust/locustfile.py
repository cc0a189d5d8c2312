"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention  # Many buyers, few tickets
  locust -f locustfile.py --tags gate        # Concurrent scans of the same codes
  locust -f locustfile.py --tags edge        # Bad input
  locust -f locustfile.py                    # All tests

Tokens are minted locally with the same JWT_SECRET the API verifies, and
payments are confirmed by posting signed mock-gateway webhooks, so the API
must run with PAYMENT_GATEWAY=mock.
"""

import json
import random
import uuid
from datetime import datetime, timezone, timedelta
from locust import HttpUser, task, between, tag, events

from boxoffice.core.config import get_settings
from boxoffice.core.security import create_access_token
from boxoffice.services.interfaces.mock_gateway import SIGNATURE_HEADER, sign_payload

CONTENTION_CAPACITY = 10

# Shared state
CONTENTION_CATEGORY_ID = None
CONTENTION_EVENT_ID = None
ISSUED_CODES = []


def auth_headers(sub: str, role: str | None = None) -> dict:
    claims = {"sub": sub}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(claims, expires_minutes=120)}"}


def signed_webhook(intent_id: str, amount: int) -> tuple[str, dict]:
    body = json.dumps({
        "id": f"evt_{uuid.uuid4().hex}",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "amount": amount, "status": "succeeded"}},
    })
    signature = sign_payload(body.encode(), get_settings().PAYMENT_WEBHOOK_SECRET)
    return body, {SIGNATURE_HEADER: signature, "content-type": "application/json"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: contention event gets {CONTENTION_CAPACITY} tickets")
    print("=" * 60)


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print("\nVerify: GET /api/v1/events/{id}/inventory -> sold + held <= capacity")
    print(f"  event_id={CONTENTION_EVENT_ID} category_id={CONTENTION_CATEGORY_ID}")


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many buyers race for CONTENTION_CAPACITY tickets

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT SUM(oi.quantity) FROM order_items oi JOIN orders o ON o.id = oi.order_id
      WHERE oi.category_id = X AND o.status IN ('paid', 'created', 'pending_payment');
    Should be <= CONTENTION_CAPACITY
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers(f"load-{uuid.uuid4().hex[:12]}")

        if not CONTENTION_CATEGORY_ID:
            starts = datetime.now(timezone.utc) + timedelta(days=30)
            resp = self.client.post(
                "/api/v1/events/",
                json={
                    "title": "Contention Test Event",
                    "venue": "Test Hall",
                    "starts_at": starts.isoformat(),
                    "ends_at": (starts + timedelta(hours=3)).isoformat(),
                    "categories": [
                        {"name": "GA", "price_cents": 100000, "capacity": CONTENTION_CAPACITY},
                    ],
                },
                headers=auth_headers("load-admin", role="admin"),
            )
            if resp.status_code == 201:
                body = resp.json()
                globals()["CONTENTION_EVENT_ID"] = body["id"]
                globals()["CONTENTION_CATEGORY_ID"] = body["categories"][0]["id"]
                print(f"\nCreated event {CONTENTION_EVENT_ID}, category {CONTENTION_CATEGORY_ID}\n")

    @tag("contention")
    @task(5)
    def checkout_and_pay(self):
        """Reserve one ticket, then confirm it through the webhook."""
        if not CONTENTION_CATEGORY_ID:
            return

        with self.client.post(
            "/api/v1/orders/",
            json={
                "items": [{"category_id": CONTENTION_CATEGORY_ID, "quantity": 1}],
                "customer": {"email": "load@test.com", "name": "Load Test"},
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: sold out or held
                return
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
                return

        checkout = resp.json()
        body, headers = signed_webhook(checkout["payment"]["intent_id"], checkout["order"]["total_cents"])
        self.client.post("/api/v1/payments/webhook", data=body, headers=headers)

        tickets = self.client.get("/api/v1/tickets/", headers=self.headers)
        if tickets.status_code == 200:
            ISSUED_CODES.extend(t["code"] for t in tickets.json())

    @tag("contention", "read")
    @task(2)
    def watch_inventory(self):
        if CONTENTION_EVENT_ID:
            self.client.get(
                f"/api/v1/events/{CONTENTION_EVENT_ID}/inventory",
                name="/api/v1/events/{id}/inventory",
            )


class GateUser(HttpUser):
    """
    TEST 2: Gate - several scanners hit the same codes

    Run after contention: locust -f locustfile.py --tags gate -u 20 -r 20 --run-time 20s

    Each code must be admitted exactly once; every other scan gets already_used.
    """
    wait_time = between(0, 0.05)

    def on_start(self):
        self.headers = auth_headers(f"gate-{uuid.uuid4().hex[:6]}", role="staff")
        self.gate_id = f"gate-{random.randint(1, 8)}"

    @tag("gate")
    @task
    def redeem(self):
        if not ISSUED_CODES:
            return
        with self.client.post(
            "/api/v1/tickets/redeem",
            json={"code": random.choice(ISSUED_CODES), "gate_id": self.gate_id},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 200 and resp.json()["reason"] in ("valid", "already_used"):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code} {resp.text[:80]}")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers(f"edge-{uuid.uuid4().hex[:12]}")

    def _checkout(self, items, expected):
        with self.client.post(
            "/api/v1/orders/",
            json={"items": items, "customer": {"email": "edge@test.com", "name": "Edge"}},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in expected:
                resp.success()
            else:
                resp.failure(f"Expected {expected}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_category(self):
        self._checkout([{"category_id": 999999, "quantity": 1}], [404])

    @tag("edge")
    @task
    def empty_cart(self):
        self._checkout([], [400])

    @tag("edge")
    @task
    def negative_quantity(self):
        self._checkout([{"category_id": CONTENTION_CATEGORY_ID or 1, "quantity": -5}], [400])

    @tag("edge")
    @task
    def huge_quantity(self):
        self._checkout([{"category_id": CONTENTION_CATEGORY_ID or 1, "quantity": 999999}], [400, 409])

    @tag("edge")
    @task
    def unsigned_webhook(self):
        with self.client.post(
            "/api/v1/payments/webhook",
            data=json.dumps({"type": "payment_intent.succeeded", "object": {"id": "pi_fake"}}),
            headers={"content-type": "application/json"},
            catch_response=True,
        ) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/orders/",
            json={"items": [{"category_id": 1, "quantity": 1}], "customer": {"email": "a@b.c", "name": "x"}},
            catch_response=True,
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
