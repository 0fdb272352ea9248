"""Stripe payment integration service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from ..domain.errors import InvalidWebhookSignature, PaymentGatewayError
from ..domain.models import PaymentConfirmation, Plan

logger = logging.getLogger(__name__)


class StripeService:
    """Payment gateway backed by Stripe PaymentIntents and Checkout sessions."""

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        currency: str = "gbp",
        frontend_base_url: str = "http://localhost:3000",
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._currency = currency
        self._frontend_base_url = frontend_base_url.rstrip("/")
        if secret_key:
            stripe.api_key = secret_key
        else:
            logger.warning("STRIPE_SECRET_KEY is not set; payments are disabled.")

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _require_configured(self) -> None:
        if not self._secret_key:
            raise PaymentGatewayError("Stripe not configured. Set STRIPE_SECRET_KEY first.")

    # ------------------------------------------------------------------
    def authorize(
        self,
        plan_id: str,
        user_id: str,
        amount: int,
        payment_method_id: Optional[str] = None,
    ) -> PaymentConfirmation:
        """Charge ``amount`` pence immediately and report whether it was captured.

        Card declines come back as an unsuccessful confirmation; any other Stripe
        failure raises ``PaymentGatewayError``.
        """
        if amount == 0:
            logger.info("Plan %s is free; skipping card charge for user %s", plan_id, user_id)
            return PaymentConfirmation(success=True, reference=None, amount=0)

        self._require_configured()
        if not payment_method_id:
            return PaymentConfirmation(success=False, reference=None, amount=amount)

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self._currency,
                payment_method=payment_method_id,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"plan_id": plan_id, "user_id": user_id},
            )
        except stripe.CardError as exc:
            logger.info("Card declined for user %s on plan %s: %s", user_id, plan_id, str(exc))
            return PaymentConfirmation(success=False, reference=None, amount=amount)
        except stripe.AuthenticationError as exc:
            raise PaymentGatewayError("Invalid Stripe API key") from exc
        except stripe.StripeError as exc:
            logger.error("Failed to create payment intent: %s", str(exc))
            raise PaymentGatewayError(f"Failed to charge payment method: {str(exc)}") from exc

        logger.info("Payment intent %s for user %s finished with status %s", intent.id, user_id, intent.status)
        return PaymentConfirmation(
            success=intent.status == "succeeded",
            reference=intent.id,
            amount=intent.amount,
        )

    def create_checkout_session(
        self,
        plan: Plan,
        user_id: str,
        owner_id: Optional[str],
        customer_email: str,
    ) -> str:
        """Create a one-off Checkout session for ``plan`` and return its URL.

        The subscription itself is created when the ``checkout.session.completed``
        webhook arrives.
        """
        self._require_configured()
        product_data: Dict[str, Any] = {"name": plan.name}
        if plan.description:
            product_data["description"] = plan.description

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                customer_email=customer_email,
                line_items=[
                    {
                        "price_data": {
                            "currency": self._currency,
                            "unit_amount": plan.price,
                            "product_data": product_data,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=(
                    f"{self._frontend_base_url}/owner-dashboard/subscriptions"
                    "?success=true&session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self._frontend_base_url}/owner-dashboard/subscriptions?canceled=true",
                metadata={
                    "user_id": user_id,
                    "owner_id": owner_id or user_id,
                    "plan_id": plan.id,
                    "plan_name": plan.name,
                    "walk_credits": str(plan.walk_credits),
                    "validity_period": str(plan.validity_period),
                },
            )
        except stripe.StripeError as exc:
            logger.error("Failed to create checkout session: %s", str(exc))
            raise PaymentGatewayError(f"Failed to create checkout session: {str(exc)}") from exc

        logger.info("Checkout session %s created for user %s on plan %s", session.id, user_id, plan.id)
        return session.url

    def parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify a webhook signature and return the decoded event."""
        if not self._webhook_secret:
            raise PaymentGatewayError("STRIPE_WEBHOOK_SECRET is not configured.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise InvalidWebhookSignature("Invalid signature") from exc
        except ValueError as exc:
            raise InvalidWebhookSignature("Malformed webhook payload") from exc
        return event.to_dict()
