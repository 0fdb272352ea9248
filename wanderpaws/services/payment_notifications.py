"""Confirmed Stripe payments, from webhooks and direct charges."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from ..application.services.subscription_ledger import SubscriptionLedger
from ..domain.errors import DuplicatePayment, InvalidState, NotFound, PaymentRequired
from ..domain.models import PaymentConfirmation, PaymentRecord, Subscription
from ..domain.ports.persistence import PaymentRepository

logger = logging.getLogger(__name__)


class PaymentNotificationHandler:
    """Turns confirmed Stripe payments into ledger purchases.

    A payment reference is written to the payment ledger in the same store
    transaction as its subscription. A webhook delivered twice creates one
    subscription, and a delivery that fails on the store writes nothing.
    """

    def __init__(self, ledger: SubscriptionLedger, payments: PaymentRepository) -> None:
        self._ledger = ledger
        self._payments = payments

    def handle_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}

        if event_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            return self.on_checkout_completed(data)
        if event_type in ("payment_intent.payment_failed", "checkout.session.async_payment_failed"):
            logger.warning("Payment failed for %s (%s)", data.get("id"), event_type)
            return {"status": "ignored"}

        logger.info("Unhandled Stripe event type %s", event_type)
        return {"status": "ignored"}

    def on_checkout_completed(self, session: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = session.get("metadata") or {}
        plan_id = metadata.get("plan_id")
        user_id = metadata.get("user_id")
        if not plan_id or not user_id:
            logger.error("Checkout session %s is missing plan/user metadata", session.get("id"))
            return {"status": "ignored"}

        if session.get("payment_status") != "paid":
            logger.info("Checkout session %s not paid yet (%s)", session.get("id"), session.get("payment_status"))
            return {"status": "pending"}

        confirmation = PaymentConfirmation(
            success=True,
            reference=session.get("payment_intent") or session.get("id"),
            amount=session.get("amount_total"),
        )
        return self.on_payment_confirmed(
            confirmation,
            plan_id=plan_id,
            user_id=user_id,
            owner_id=metadata.get("owner_id"),
        )

    def on_payment_confirmed(
        self,
        confirmation: PaymentConfirmation,
        *,
        plan_id: str,
        user_id: str,
        owner_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not confirmation.reference:
            raise PaymentRequired("Payment confirmation has no reference.", {"plan_id": plan_id})

        existing = self._payments.get_payment(confirmation.reference)
        if existing and existing.status in ("succeeded", "failed"):
            logger.info("Payment %s already processed; skipping", confirmation.reference)
            return {"status": "duplicate"}

        try:
            subscription = self._ledger.purchase(
                user_id, owner_id, plan_id, confirmation, claim_payment=True
            )
        except DuplicatePayment:
            logger.info("Payment %s already processed; skipping", confirmation.reference)
            return {"status": "duplicate"}
        except (NotFound, InvalidState, PaymentRequired) as exc:
            self._mark_failed(confirmation)
            logger.error(
                "Payment %s captured but subscription not created: %s",
                confirmation.reference,
                exc.message,
            )
            return {"status": "failed", "reason": exc.error_code}

        return {"status": "processed", "subscription_id": subscription.id}

    def on_charge_captured(
        self,
        confirmation: PaymentConfirmation,
        *,
        plan_id: str,
        user_id: str,
        owner_id: Optional[str] = None,
    ) -> Subscription:
        """Activate a plan paid through a direct charge.

        The captured charge is recorded before the purchase, so a charge whose
        subscription was never written stays findable by its reference.
        """
        captured = bool(confirmation.success and confirmation.reference)
        if captured:
            self._payments.record_payment(self._record(confirmation, "captured"))

        try:
            return self._ledger.purchase(
                user_id, owner_id, plan_id, confirmation, claim_payment=True
            )
        except DuplicatePayment:
            raise
        except (NotFound, InvalidState) as exc:
            if captured:
                self._payments.update_payment(confirmation.reference, status="failed")
                logger.error(
                    "Charge %s captured but subscription not created: %s",
                    confirmation.reference,
                    exc.message,
                )
            raise

    def _mark_failed(self, confirmation: PaymentConfirmation) -> None:
        if not self._payments.record_payment(self._record(confirmation, "failed")):
            self._payments.update_payment(confirmation.reference, status="failed")

    @staticmethod
    def _record(confirmation: PaymentConfirmation, status: str) -> PaymentRecord:
        now = datetime.now(timezone.utc)
        return PaymentRecord(
            reference=confirmation.reference,
            status=status,
            amount=confirmation.amount,
            subscription_id=None,
            created_at=now,
            updated_at=now,
        )
