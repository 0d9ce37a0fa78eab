"""HTTP surface: checkout flow, webhook endpoint, token views and admin routes."""

import pytest

from app.models.payment_order import PaymentOrder
from app.models.webhook_event import WebhookEvent

pytestmark = pytest.mark.asyncio


async def test_plans_catalogue(client, make_plan):
    await make_plan(name="pro", price_inr=999, tokens=50_000, sort_order=2)
    await make_plan(name="starter", price_inr=499, tokens=20_000, sort_order=1)
    await make_plan(name="legacy", is_active=False)
    r = await client.get("/v1/plans")
    assert r.status_code == 200
    data = r.json()
    assert data["results"] == 2
    assert [p["name"] for p in data["plans"]] == ["starter", "pro"]


async def test_order_requires_session(client, make_plan, fake_gateway):
    plan = await make_plan()
    r = await client.post(f"/v1/plans/{plan.id}/orders")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


async def test_purchase_flow(client, make_user, make_plan, fake_gateway, auth_headers, sign_checkout, webhook_body, sign_webhook):
    user = await make_user()
    plan = await make_plan(price_inr=499, tokens=20_000)
    headers = auth_headers(user)

    r = await client.post(f"/v1/plans/{plan.id}/orders", headers=headers)
    assert r.status_code == 200
    created = r.json()
    assert created["amount"] == 49_900
    assert created["currency"] == "INR"
    assert created["key_id"] == "rzp_test_key"
    order_id = created["order_id"]

    r = await client.post(
        f"/v1/plans/{plan.id}/verify-payment",
        headers=headers,
        json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign_checkout(order_id, "pay_1"),
            "amount": 49_900,
        },
    )
    assert r.status_code == 200
    assert r.json()["order_status"] == "verified"
    assert r.json()["provisional"] is True
    assert (await client.get("/v1/tokens/balance", headers=headers)).json()["balance"] == 0

    body = webhook_body(order_id, "pay_1", 49_900)
    for expected in ("captured", "already_captured"):
        r = await client.post(
            "/v1/payments/webhook",
            content=body,
            headers={"X-Razorpay-Signature": sign_webhook(body), "Content-Type": "application/json"},
        )
        assert r.status_code == 200
        assert r.json() == {"status": expected, "order_id": order_id}

    balance = (await client.get("/v1/tokens/balance", headers=headers)).json()
    assert balance["paid_tokens"] == 20_000
    assert balance["balance"] == 20_000

    entries = (await client.get("/v1/tokens/ledger", headers=headers)).json()["items"]
    assert len(entries) == 1
    assert entries[0]["type"] == "purchase"
    assert entries[0]["order_id"] == order_id

    orders = (await client.get("/v1/tokens/orders", headers=headers)).json()["items"]
    assert orders[0]["status"] == "captured"

    me = (await client.get("/v1/auth/me", headers=headers)).json()
    assert me["tokens"]["balance"] == 20_000
    assert me["current_plan"]["id"] == str(plan.id)


async def test_verify_payment_bad_signature(client, make_user, make_plan, fake_gateway, auth_headers):
    user = await make_user()
    plan = await make_plan()
    headers = auth_headers(user)
    order_id = (await client.post(f"/v1/plans/{plan.id}/orders", headers=headers)).json()["order_id"]
    r = await client.post(
        f"/v1/plans/{plan.id}/verify-payment",
        headers=headers,
        json={"razorpay_order_id": order_id, "razorpay_payment_id": "pay_1", "razorpay_signature": "bad"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_SIGNATURE"


async def test_webhook_bad_signature(client, webhook_body):
    r = await client.post(
        "/v1/payments/webhook",
        content=webhook_body("order_1", "pay_1", 49_900),
        headers={"X-Razorpay-Signature": "deadbeef"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_SIGNATURE"


async def test_webhook_non_ascii_signature_header(client, webhook_body):
    r = await client.post(
        "/v1/payments/webhook",
        content=webhook_body("order_1", "pay_1", 49_900),
        headers={"X-Razorpay-Signature": b"\xe9" * 64},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_SIGNATURE"


async def test_webhook_unknown_order_acknowledged(client, webhook_body, sign_webhook):
    body = webhook_body("order_elsewhere", "pay_1", 49_900)
    r = await client.post("/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": sign_webhook(body)})
    assert r.status_code == 200
    assert r.json() == {"status": "unknown_order"}


async def test_webhook_for_expired_order_acknowledged_as_rejected(client, make_user, make_plan, fake_gateway, auth_headers, webhook_body, sign_webhook):
    user = await make_user()
    plan = await make_plan()
    order_id = (await client.post(f"/v1/plans/{plan.id}/orders", headers=auth_headers(user))).json()["order_id"]
    await PaymentOrder.find_one(PaymentOrder.order_id == order_id).update({"$set": {"status": "expired"}})

    body = webhook_body(order_id, "pay_1", 49_900)
    r = await client.post("/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": sign_webhook(body)})
    assert r.status_code == 200
    assert r.json() == {"status": "rejected", "code": "ORDER_CLOSED", "order_id": order_id}
    event = await WebhookEvent.find_one(WebhookEvent.payment_id == "pay_1")
    assert event.outcome == "rejected"
    assert event.error == "ORDER_CLOSED"


async def test_webhook_amount_mismatch_acknowledged_as_rejected(client, make_user, make_plan, fake_gateway, auth_headers, webhook_body, sign_webhook):
    user = await make_user()
    plan = await make_plan()
    order_id = (await client.post(f"/v1/plans/{plan.id}/orders", headers=auth_headers(user))).json()["order_id"]

    body = webhook_body(order_id, "pay_1", 100)
    r = await client.post("/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": sign_webhook(body)})
    assert r.status_code == 200
    assert r.json() == {"status": "rejected", "code": "ORDER_MISMATCH", "order_id": order_id}
    assert (await PaymentOrder.find_one(PaymentOrder.order_id == order_id)).status == "pending"


async def test_admin_routes_require_admin(client, make_user, auth_headers):
    user = await make_user()
    r = await client.post("/v1/admin/orders/expire", headers=auth_headers(user))
    assert r.status_code == 403


async def test_admin_plan_and_recompute(client, make_user, auth_headers):
    admin = await make_user("admin@example.com", role="admin")
    headers = auth_headers(admin)
    r = await client.post(
        "/v1/admin/plans",
        headers=headers,
        json={"name": "pro", "display_name": "Pro", "price_inr": 999, "tokens": 50_000, "model_type": "premium"},
    )
    assert r.status_code == 201
    plan_id = r.json()["plan"]["id"]

    r = await client.patch(f"/v1/admin/plans/{plan_id}", headers=headers, json={"tokens": 60_000})
    assert r.status_code == 200
    assert r.json()["plan"]["tokens"] == 60_000

    r = await client.post(f"/v1/admin/users/{admin.id}/balance/recompute", headers=headers)
    assert r.status_code == 200
    assert r.json()["consistent"] is True
    assert r.json()["repaired"] is False


async def test_session_invalidated_by_version_bump(client, make_user, auth_headers):
    user = await make_user()
    headers = auth_headers(user)
    user.session_version += 1
    await user.save()
    r = await client.get("/v1/tokens/balance", headers=headers)
    assert r.status_code == 401


async def test_admin_order_detail_shows_audit_trail(client, make_user, make_plan, fake_gateway, auth_headers, webhook_body, sign_webhook):
    buyer = await make_user()
    admin = await make_user("admin@example.com", role="admin")
    plan = await make_plan()
    order_id = (await client.post(f"/v1/plans/{plan.id}/orders", headers=auth_headers(buyer))).json()["order_id"]
    body = webhook_body(order_id, "pay_1", 49_900)
    await client.post("/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": sign_webhook(body)})

    r = await client.get(f"/v1/admin/orders/{order_id}", headers=auth_headers(admin))
    assert r.status_code == 200
    data = r.json()
    assert data["order"]["status"] == "captured"
    assert [e["event_type"] for e in data["audit"]] == ["order_created", "payment_captured"]

    r = await client.get("/v1/admin/orders/order_missing", headers=auth_headers(admin))
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "UNKNOWN_ORDER"
