"""End-to-end tests of the HTTP surface via TestClient."""

import json
from types import SimpleNamespace

import pytest
import stripe

import app.main as main
from app import cart, store
from app.models import OrderStatus


@pytest.fixture()
def events(monkeypatch):
    published = []
    monkeypatch.setattr(main, "publish", lambda t, p, safe=False: published.append((t, p)))
    return published


@pytest.fixture()
def shop(seed):
    seed.course("courseA", 1000, name="Course A")
    seed.course("courseB", 2500, name="Course B")
    seed.cart("U", "courseA", "courseB")


def _webhook_payload(session_id="cs_test_1", event_type="checkout.session.completed", mode="payment"):
    return json.dumps(
        {
            "id": "evt_1",
            "type": event_type,
            "data": {"object": {"id": session_id, "mode": mode, "payment_status": "paid"}},
        }
    )


def _post_webhook(client, sign, payload, signature=None):
    headers = {"Content-Type": "application/json"}
    headers["Stripe-Signature"] = signature if signature is not None else sign(payload)
    return client.post("/webhooks/stripe", content=payload.encode(), headers=headers)


class TestCheckout:
    def test_requires_authentication(self, client):
        r = client.post("/checkout/fakepay")
        assert r.status_code == 401

    def test_empty_cart(self, client, auth_headers):
        r = client.post("/checkout/fakepay", headers=auth_headers("U"))
        assert r.status_code == 422
        assert r.json() == {"detail": "no items to checkout"}

    def test_unknown_provider(self, client, auth_headers, shop):
        r = client.post("/checkout/bitcoin", headers=auth_headers("U"))
        assert r.status_code == 404

    def test_creates_pending_order(self, client, auth_headers, shop, fake_provider, events):
        fake_provider.next_id = "T"

        r = client.post("/checkout/fakepay", headers=auth_headers("U"))

        assert r.status_code == 201
        body = r.json()
        assert body["provider"] == "fakepay"
        assert body["transaction_id"] == "T"
        assert body["redirect_url"] == "https://pay.example/approve/T"
        assert "status" not in body  # the internal order is not exposed

        orders = client.get("/orders", headers=auth_headers("U")).json()
        assert len(orders) == 1
        assert orders[0]["status"] == "pending"
        assert orders[0]["total"] == 3500
        assert orders[0]["items"] == [
            {"course_id": "courseA", "price": 1000},
            {"course_id": "courseB", "price": 2500},
        ]
        assert [t for t, _ in events] == ["order.created"]

    def test_provider_failure(self, client, auth_headers, shop, fake_provider):
        fake_provider.fail_create = True

        r = client.post("/checkout/fakepay", headers=auth_headers("U"))

        assert r.status_code == 502
        assert client.get("/orders", headers=auth_headers("U")).json() == []


class TestCapture:
    def test_capture_fulfills_once(self, client, auth_headers, shop, fake_provider, db, events):
        fake_provider.next_id = "T"
        client.post("/checkout/fakepay", headers=auth_headers("U"))

        r = client.post("/checkout/fakepay/capture/T")
        assert r.status_code == 204

        # client did not see the first answer and retries
        r = client.post("/checkout/fakepay/capture/T")
        assert r.status_code == 204

        assert store.fetch_by_provider_id(db, "T").status == OrderStatus.SUCCESS.value
        assert cart.fetch_items(db, "U") == []
        assert [t for t, _ in events].count("order.fulfilled") == 1

    def test_capture_not_completed(self, client, auth_headers, shop, fake_provider, db):
        fake_provider.next_id = "T"
        client.post("/checkout/fakepay", headers=auth_headers("U"))
        fake_provider.capture_status = "VOIDED"

        r = client.post("/checkout/fakepay/capture/T")

        assert r.status_code == 409
        assert store.fetch_by_provider_id(db, "T").status == OrderStatus.PENDING.value
        assert len(cart.fetch_items(db, "U")) == 2

    def test_capture_is_only_for_redirect_providers(self, client):
        r = client.post("/checkout/stripe/capture/cs_test_1")
        assert r.status_code == 404

    def test_capture_of_unknown_order_is_critical(self, client, events):
        r = client.post("/checkout/fakepay/capture/never-stored")

        assert r.status_code == 500
        assert r.json() == {"detail": "the order was paid but its fulfillment failed"}
        assert events[0][0] == "order.fulfillment_failed"
        assert events[0][1]["provider_transaction_id"] == "never-stored"


class TestStripeWebhook:
    @pytest.fixture()
    def checked_out(self, client, auth_headers, shop, monkeypatch):
        monkeypatch.setattr(
            stripe.checkout.Session,
            "create",
            lambda **kw: SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1"),
        )
        r = client.post("/checkout/stripe", headers=auth_headers("U"))
        assert r.status_code == 201
        assert r.json()["redirect_url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
        return r.json()["transaction_id"]

    def test_completed_checkout_fulfills(self, client, sign, checked_out, db, events):
        payload = _webhook_payload(checked_out)

        assert _post_webhook(client, sign, payload).status_code == 204
        # redelivery
        assert _post_webhook(client, sign, payload).status_code == 204

        assert store.fetch_by_provider_id(db, checked_out).status == OrderStatus.SUCCESS.value
        assert cart.fetch_items(db, "U") == []
        assert [t for t, _ in events].count("order.fulfilled") == 1

    def test_bad_signature_is_rejected_before_any_lookup(self, client, sign, checked_out, db, monkeypatch):
        lookups = []
        monkeypatch.setattr(store, "fetch_by_provider_id", lambda *a: lookups.append(a))
        payload = _webhook_payload(checked_out)

        r = _post_webhook(client, sign, payload, signature=sign(payload, secret="whsec_forged"))
        assert r.status_code == 400

        r = client.post("/webhooks/stripe", content=payload.encode())
        assert r.status_code == 400

        assert lookups == []

    @pytest.mark.parametrize(
        "event_type, mode",
        [("payment_intent.succeeded", "payment"), ("checkout.session.completed", "subscription")],
    )
    def test_irrelevant_events_are_acknowledged(self, client, sign, checked_out, db, event_type, mode):
        payload = _webhook_payload(checked_out, event_type=event_type, mode=mode)

        assert _post_webhook(client, sign, payload).status_code == 204

        assert store.fetch_by_provider_id(db, checked_out).status == OrderStatus.PENDING.value
        assert len(cart.fetch_items(db, "U")) == 2

    def test_fulfillment_failure_pages_and_errors(self, client, sign, checked_out, db, events, monkeypatch):
        def broken_clear(d, user_id):
            from sqlalchemy.exc import OperationalError

            raise OperationalError("DELETE FROM cart_items", {}, Exception("disk I/O error"))

        monkeypatch.setattr(cart, "clear", broken_clear)

        r = _post_webhook(client, sign, _webhook_payload(checked_out))

        assert r.status_code == 500
        assert r.json()["detail"] == "the order was paid but its fulfillment failed"
        failures = [p for t, p in events if t == "order.fulfillment_failed"]
        assert failures and failures[0]["provider_transaction_id"] == checked_out
        assert store.fetch_by_provider_id(db, checked_out).status == OrderStatus.PENDING.value

    def test_webhook_is_only_for_webhook_providers(self, client, sign):
        payload = _webhook_payload()
        r = client.post("/webhooks/fakepay", content=payload.encode(), headers={"Stripe-Signature": sign(payload)})
        assert r.status_code == 404


class TestOrders:
    def test_order_detail_is_private(self, client, auth_headers, shop, fake_provider):
        client.post("/checkout/fakepay", headers=auth_headers("U"))
        order_id = client.get("/orders", headers=auth_headers("U")).json()[0]["id"]

        mine = client.get(f"/orders/{order_id}", headers=auth_headers("U"))
        assert mine.status_code == 200
        assert mine.json()["provider_transaction_id"] == "TXN-1"

        theirs = client.get(f"/orders/{order_id}", headers=auth_headers("someone-else"))
        assert theirs.status_code == 404

    def test_invalid_token(self, client):
        r = client.get("/orders", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
