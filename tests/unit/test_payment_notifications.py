from unittest.mock import patch

import pytest

from wanderpaws.domain.errors import (
    DuplicatePayment,
    PaymentRequired,
    PlanInactive,
    StoreUnavailable,
)
from wanderpaws.domain.models import PaymentConfirmation
from wanderpaws.services.payment_notifications import PaymentNotificationHandler


@pytest.fixture
def handler(ledger, store):
    return PaymentNotificationHandler(ledger, store)


def checkout_event(event_type="checkout.session.completed", **session):
    payload = {
        "id": "cs_test_1",
        "payment_intent": "pi_checkout_1",
        "payment_status": "paid",
        "amount_total": 2999,
        "metadata": {"user_id": "user-1", "owner_id": "owner-1", "plan_id": "basic"},
    }
    payload.update(session)
    return {"id": "evt_1", "type": event_type, "data": {"object": payload}}


def test_completed_checkout_creates_subscription(handler, ledger, store, basic_plan):
    result = handler.handle_event(checkout_event())

    assert result["status"] == "processed"
    subscription = ledger.get_subscription(result["subscription_id"])
    assert subscription.owner_id == "owner-1"
    assert subscription.payment_reference == "pi_checkout_1"
    assert subscription.credits_remaining == 4

    payment = store.get_payment("pi_checkout_1")
    assert payment.status == "succeeded"
    assert payment.subscription_id == subscription.id


def test_redelivered_webhook_creates_one_subscription(handler, ledger, basic_plan):
    assert handler.handle_event(checkout_event())["status"] == "processed"
    assert handler.handle_event(checkout_event())["status"] == "duplicate"

    assert len(ledger.history("user-1")) == 1


def test_async_success_event_is_processed(handler, basic_plan):
    event = checkout_event("checkout.session.async_payment_succeeded")
    assert handler.handle_event(event)["status"] == "processed"


def test_unpaid_session_is_pending(handler, ledger, basic_plan):
    result = handler.handle_event(checkout_event(payment_status="unpaid"))

    assert result == {"status": "pending"}
    assert ledger.history("user-1") == []


def test_session_without_metadata_is_ignored(handler, ledger, basic_plan):
    result = handler.handle_event(checkout_event(metadata={}))

    assert result == {"status": "ignored"}
    assert ledger.history("user-1") == []


def test_session_reference_falls_back_to_session_id(handler, ledger, basic_plan):
    result = handler.handle_event(checkout_event(payment_intent=None))

    assert ledger.get_subscription(result["subscription_id"]).payment_reference == "cs_test_1"


def test_inactive_plan_marks_payment_failed(handler, ledger, store, plan_factory):
    store.save_plan(plan_factory(is_active=False))

    result = handler.handle_event(checkout_event())

    assert result == {"status": "failed", "reason": "PLAN_INACTIVE"}
    assert store.get_payment("pi_checkout_1").status == "failed"
    assert ledger.history("user-1") == []


@pytest.mark.parametrize(
    "event_type", ["payment_intent.payment_failed", "customer.created"]
)
def test_other_events_are_ignored(handler, event_type):
    assert handler.handle_event({"type": event_type, "data": {"object": {"id": "x"}}}) == {
        "status": "ignored"
    }


def test_confirmation_without_reference_is_rejected(handler, basic_plan):
    with pytest.raises(PaymentRequired):
        handler.on_payment_confirmed(
            PaymentConfirmation(success=True, reference=None, amount=2999),
            plan_id="basic",
            user_id="user-1",
        )


def test_store_outage_leaves_event_retryable(handler, ledger, store, basic_plan):
    outage = StoreUnavailable("Database is unavailable.")
    with patch.object(store, "insert_subscription", side_effect=outage):
        with pytest.raises(StoreUnavailable):
            handler.handle_event(checkout_event())

    assert store.get_payment("pi_checkout_1") is None
    assert ledger.history("user-1") == []

    redelivered = handler.handle_event(checkout_event())

    assert redelivered["status"] == "processed"
    assert len(ledger.history("user-1")) == 1
    assert store.get_payment("pi_checkout_1").status == "succeeded"


def test_delivery_racing_a_committed_claim_is_duplicate(handler, ledger, store, basic_plan, paid):
    ledger.purchase("user-1", None, basic_plan.id, paid, claim_payment=True)

    with patch.object(store, "get_payment", return_value=None):
        result = handler.on_payment_confirmed(paid, plan_id=basic_plan.id, user_id="user-1")

    assert result == {"status": "duplicate"}
    assert len(ledger.history("user-1")) == 1


class TestDirectCharge:
    def test_captured_charge_is_recorded_with_subscription(self, handler, store, basic_plan, paid):
        subscription = handler.on_charge_captured(paid, plan_id=basic_plan.id, user_id="user-1")

        payment = store.get_payment("pi_test")
        assert payment.status == "succeeded"
        assert payment.subscription_id == subscription.id

    def test_store_outage_keeps_captured_charge_findable(self, handler, store, basic_plan, paid):
        outage = StoreUnavailable("Database is unavailable.")
        with patch.object(store, "insert_subscription", side_effect=outage):
            with pytest.raises(StoreUnavailable):
                handler.on_charge_captured(paid, plan_id=basic_plan.id, user_id="user-1")

        payment = store.get_payment("pi_test")
        assert payment.status == "captured"
        assert payment.subscription_id is None

        subscription = handler.on_charge_captured(paid, plan_id=basic_plan.id, user_id="user-1")
        assert store.get_payment("pi_test").subscription_id == subscription.id

    def test_rejected_purchase_marks_charge_failed(self, handler, store, plan_factory, paid):
        store.save_plan(plan_factory(is_active=False))

        with pytest.raises(PlanInactive):
            handler.on_charge_captured(paid, plan_id="basic", user_id="user-1")
        assert store.get_payment("pi_test").status == "failed"

    def test_reused_reference_is_rejected(self, handler, ledger, basic_plan, paid):
        handler.on_charge_captured(paid, plan_id=basic_plan.id, user_id="user-1")

        with pytest.raises(DuplicatePayment):
            handler.on_charge_captured(paid, plan_id=basic_plan.id, user_id="user-1")
        assert len(ledger.history("user-1")) == 1

    def test_free_plan_needs_no_payment_record(self, handler, store, plan_factory):
        store.save_plan(plan_factory(id="trial", price=0))
        free = PaymentConfirmation(success=True, reference=None, amount=0)

        subscription = handler.on_charge_captured(free, plan_id="trial", user_id="user-1")

        assert subscription.payment_reference is None
