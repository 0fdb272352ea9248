import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from wanderpaws.core.app_factory import create_application
from wanderpaws.domain.errors import StoreUnavailable
from wanderpaws.domain.models import PaymentConfirmation, Plan
from wanderpaws.services.stripe_service import StripeService

WEBHOOK_SECRET = "whsec_api_test"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("ADMIN_EMAIL", "admin@wanderpaws.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "walkies")
    monkeypatch.setenv("ADMIN_TOKEN_SECRET", "test-secret")
    monkeypatch.setenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "0")
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)

    app = create_application()
    with TestClient(app) as test_client:
        persistence = app.state.container.persistence
        persistence.save_plan(
            Plan(
                id="basic",
                name="Basic",
                description="Four walks a month",
                walk_credits=4,
                walk_duration=60,
                price=2999,
                validity_period=30,
            )
        )
        persistence.save_plan(
            Plan(
                id="trial",
                name="Trial",
                description="One free walk",
                walk_credits=1,
                walk_duration=30,
                price=0,
                validity_period=7,
            )
        )
        persistence.save_plan(
            Plan(
                id="legacy",
                name="Legacy",
                description="No longer sold",
                walk_credits=2,
                walk_duration=30,
                price=1500,
                validity_period=30,
                is_active=False,
            )
        )
        yield test_client


def purchase(client, plan_id="trial", **extra):
    body = {"plan_id": plan_id, "user_id": "user-1"}
    body.update(extra)
    return client.post("/api/subscriptions/purchase", json=body)


def test_health_reports_stripe_disabled(client):
    assert client.get("/health").json() == {"ok": True, "stripe": False}


def test_list_plans_excludes_inactive(client):
    response = client.get("/api/subscriptions/plans")

    assert response.status_code == 200
    plans = response.json()
    assert [plan["id"] for plan in plans] == ["trial", "basic"]
    assert plans[1]["price_display"] == "£29.99"
    assert plans[1]["price_per_walk_display"] == "£7.50"


def test_unknown_plan_is_404(client):
    response = client.get("/api/subscriptions/plans/missing")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PLAN_NOT_FOUND"


def test_free_plan_lifecycle(client):
    created = purchase(client)
    assert created.status_code == 201
    subscription = created.json()
    assert subscription["credits_remaining"] == 1
    assert subscription["is_usable"] is True

    debited = client.post(f"/api/subscriptions/{subscription['id']}/debit")
    assert debited.status_code == 200
    assert debited.json()["credits_remaining"] == 0

    rejected = client.post(f"/api/subscriptions/{subscription['id']}/debit")
    assert rejected.status_code == 409
    assert rejected.json()["error"]["code"] == "NO_CREDITS_REMAINING"

    cancelled = client.post(f"/api/subscriptions/{subscription['id']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    again = client.post(f"/api/subscriptions/{subscription['id']}/cancel")
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "INVALID_STATE"

    history = client.get("/api/subscriptions/users/user-1/history").json()
    assert [item["id"] for item in history] == [subscription["id"]]
    assert client.get("/api/subscriptions/users/user-1/usable").json() == []


def test_inactive_plan_purchase_is_rejected(client):
    response = purchase(client, plan_id="legacy")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "PLAN_INACTIVE"


def test_paid_plan_without_stripe_is_gateway_error(client):
    response = purchase(client, plan_id="basic", payment_method_id="pm_card_visa")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "PAYMENT_GATEWAY_ERROR"


def test_paid_plan_with_captured_charge(client):
    confirmation = PaymentConfirmation(success=True, reference="pi_api", amount=2999)
    with patch.object(StripeService, "authorize", return_value=confirmation):
        response = purchase(client, plan_id="basic", payment_method_id="pm_card_visa")

    assert response.status_code == 201
    body = response.json()
    assert body["payment_reference"] == "pi_api"
    assert body["total_credits"] == 4
    assert client.get(f"/api/subscriptions/{body['id']}").json()["credits_remaining"] == 4

    payment = client.app.state.container.persistence.get_payment("pi_api")
    assert payment.status == "succeeded"
    assert payment.subscription_id == body["id"]


def test_declined_charge_is_payment_required(client):
    declined = PaymentConfirmation(success=False, reference=None, amount=2999)
    with patch.object(StripeService, "authorize", return_value=declined):
        response = purchase(client, plan_id="basic", payment_method_id="pm_card_declined")

    assert response.status_code == 402
    assert client.get("/api/subscriptions/users/user-1/history").json() == []


def test_unknown_subscription_is_404(client):
    response = client.post("/api/subscriptions/missing/debit")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SUBSCRIPTION_NOT_FOUND"


def test_invalid_purchase_body(client):
    assert client.post("/api/subscriptions/purchase", json={"plan_id": ""}).status_code == 422


def _signed(payload: str) -> dict:
    timestamp = int(time.time())
    digest = hmac.new(
        WEBHOOK_SECRET.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return {"stripe-signature": f"t={timestamp},v1={digest}", "content-type": "application/json"}


def test_webhook_activates_subscription_once(client):
    payload = json.dumps(
        {
            "id": "evt_api",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_api",
                    "payment_intent": "pi_webhook",
                    "payment_status": "paid",
                    "amount_total": 2999,
                    "metadata": {"user_id": "user-2", "plan_id": "basic"},
                }
            },
        }
    )

    first = client.post("/api/stripe/webhook", content=payload, headers=_signed(payload))
    second = client.post("/api/stripe/webhook", content=payload, headers=_signed(payload))

    assert first.status_code == 200
    assert first.json()["status"] == "processed"
    assert second.json() == {"status": "duplicate"}
    history = client.get("/api/subscriptions/users/user-2/history").json()
    assert len(history) == 1
    assert history[0]["payment_reference"] == "pi_webhook"


def test_webhook_with_bad_signature(client):
    response = client.post(
        "/api/stripe/webhook",
        content=b"{}",
        headers={"stripe-signature": "t=1,v1=deadbeef"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_WEBHOOK_SIGNATURE"


def test_expire_sweep_requires_admin(client):
    assert client.post("/api/admin/subscriptions/expire-sweep").status_code == 401

    purchase(client)
    login = client.post(
        "/api/admin/login",
        json={"email": "admin@wanderpaws.com", "password": "walkies"},
    )
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    assert client.get("/api/admin/me", headers=headers).json()["email"] == "admin@wanderpaws.com"
    response = client.post(
        "/api/admin/subscriptions/expire-sweep",
        params={"now": "2100-01-01T00:00:00+00:00"},
        headers=headers,
    )
    assert response.json() == {"expired": 1}

    history = client.get("/api/subscriptions/users/user-1/history").json()
    assert history[0]["status"] == "expired"


def test_admin_login_rejects_wrong_password(client):
    response = client.post(
        "/api/admin/login",
        json={"email": "admin@wanderpaws.com", "password": "nope"},
    )
    assert response.status_code == 401


def _checkout_completed(user_id: str, reference: str) -> str:
    return json.dumps(
        {
            "id": f"evt_{reference}",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": f"cs_{reference}",
                    "payment_intent": reference,
                    "payment_status": "paid",
                    "amount_total": 2999,
                    "metadata": {"user_id": user_id, "plan_id": "basic"},
                }
            },
        }
    )


def test_webhook_after_store_outage_is_redelivered(client):
    persistence = client.app.state.container.persistence
    payload = _checkout_completed("user-3", "pi_outage")
    outage = StoreUnavailable("Database is unavailable.")

    with patch.object(persistence, "insert_subscription", side_effect=outage):
        failed = client.post("/api/stripe/webhook", content=payload, headers=_signed(payload))

    assert failed.status_code == 503
    assert failed.json()["error"]["code"] == "STORE_UNAVAILABLE"

    retried = client.post("/api/stripe/webhook", content=payload, headers=_signed(payload))

    assert retried.json()["status"] == "processed"
    history = client.get("/api/subscriptions/users/user-3/history").json()
    assert [item["payment_reference"] for item in history] == ["pi_outage"]


def test_closed_store_is_service_unavailable(client):
    client.app.state.container.persistence.close()

    response = client.get("/api/subscriptions/plans")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"
