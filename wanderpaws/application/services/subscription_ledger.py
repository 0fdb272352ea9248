from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ...domain.errors import (
    ConditionNotMet,
    InvalidState,
    NoCreditsRemaining,
    PaymentRequired,
    PlanInactive,
    SubscriptionCancelled,
    SubscriptionExpired,
    SubscriptionNotFound,
)
from ...domain.models import (
    PaymentConfirmation,
    PaymentRecord,
    Plan,
    Subscription,
    SubscriptionStatus,
    effective_status,
    is_usable,
)
from ...domain.ports.persistence import SubscriptionRepository
from .plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionLedger:
    """Owns the subscription lifecycle: purchase, credit debits, cancellation and expiry.

    Every check-then-act step goes through the store's conditional update so the
    decision and the write happen in one transaction; nothing here relies on an
    in-process lock.
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        catalog: PlanCatalog,
        clock: Clock = utcnow,
    ) -> None:
        self._subscriptions = subscriptions
        self._catalog = catalog
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    def purchasable_plan(self, plan_id: str) -> Plan:
        """Return the plan if it exists and is on sale, before any money is taken."""
        plan = self._catalog.get_by_id(plan_id)
        if not plan.is_active:
            raise PlanInactive(plan_id)
        return plan

    def purchase(
        self,
        user_id: str,
        owner_id: Optional[str],
        plan_id: str,
        payment_confirmation: Optional[PaymentConfirmation],
        claim_payment: bool = False,
    ) -> Subscription:
        """Activate ``plan_id`` for ``user_id`` once payment is confirmed.

        With ``claim_payment`` the confirmation's reference is written to the
        payment ledger in the same transaction as the subscription, so a
        reference can activate at most one subscription.
        """
        plan = self.purchasable_plan(plan_id)
        if payment_confirmation is None or not payment_confirmation.success:
            raise PaymentRequired(
                f"Payment for plan {plan_id} was not confirmed.",
                {"plan_id": plan_id, "user_id": user_id},
            )

        now = self._clock()
        subscription = Subscription(
            id=uuid.uuid4().hex,
            plan_id=plan.id,
            plan_name=plan.name,
            user_id=user_id,
            owner_id=owner_id or user_id,
            status=SubscriptionStatus.active,
            purchase_date=now,
            end_date=now + timedelta(days=plan.validity_period),
            total_credits=plan.walk_credits,
            credits_remaining=plan.walk_credits,
            purchase_amount=plan.price,
            walk_duration=plan.walk_duration,
            payment_reference=payment_confirmation.reference,
            created_at=now,
            updated_at=now,
        )
        payment = None
        if claim_payment and payment_confirmation.reference:
            amount = payment_confirmation.amount
            payment = PaymentRecord(
                reference=payment_confirmation.reference,
                status="succeeded",
                amount=plan.price if amount is None else amount,
                subscription_id=subscription.id,
                created_at=now,
                updated_at=now,
            )
        stored = self._subscriptions.insert_subscription(subscription, payment)
        logger.info(
            "Created subscription %s for user %s on plan %s (%s credits, ends %s)",
            stored.id,
            user_id,
            plan.id,
            stored.total_credits,
            stored.end_date.isoformat(),
        )
        return stored

    def debit_credit(self, subscription_id: str) -> Subscription:
        now = self._clock()

        def take_one(current: Subscription) -> Subscription:
            return replace(
                current,
                credits_remaining=current.credits_remaining - 1,
                updated_at=now,
            )

        try:
            updated = self._subscriptions.update_subscription_conditional(
                subscription_id,
                lambda current: is_usable(current, now),
                take_one,
            )
        except ConditionNotMet as exc:
            error = self._debit_rejection(exc.current, now)
            logger.debug("Rejected debit on subscription %s: %s", subscription_id, error.error_code)
            raise error from None

        logger.info(
            "Debited subscription %s, %s credits remaining",
            subscription_id,
            updated.credits_remaining,
        )
        return updated

    def cancel(self, subscription_id: str) -> Subscription:
        now = self._clock()

        def cancellable(current: Subscription) -> bool:
            return effective_status(current, now) is SubscriptionStatus.active

        def mark_cancelled(current: Subscription) -> Subscription:
            return replace(
                current,
                status=SubscriptionStatus.cancelled,
                end_date=now,
                updated_at=now,
            )

        try:
            updated = self._subscriptions.update_subscription_conditional(
                subscription_id, cancellable, mark_cancelled
            )
        except ConditionNotMet as exc:
            current_status = effective_status(exc.current, now).value
            raise InvalidState(
                f"Subscription {subscription_id} is {current_status} and cannot be cancelled.",
                {"subscription_id": subscription_id, "status": current_status},
            ) from None

        logger.info(
            "Cancelled subscription %s, forfeiting %s credits",
            subscription_id,
            updated.credits_remaining,
        )
        return updated

    def get_usable(self, user_id: str) -> List[Subscription]:
        """Usable subscriptions for ``user_id``, soonest-expiring first."""
        now = self._clock()
        usable = [
            item
            for item in self._subscriptions.find_subscriptions_by_user(user_id)
            if is_usable(item, now)
        ]
        return sorted(usable, key=lambda item: (item.end_date, item.id))

    def expire_sweep(self, now: Optional[datetime] = None) -> int:
        """Persist ``expired`` for active subscriptions whose end date has passed.

        Returns the number of subscriptions transitioned by this run.
        """
        cutoff = now or self._clock()
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)

        def lapsed(current: Subscription) -> bool:
            return current.status is SubscriptionStatus.active and current.end_date <= cutoff

        def mark_expired(current: Subscription) -> Subscription:
            return replace(current, status=SubscriptionStatus.expired, updated_at=cutoff)

        expired = 0
        for candidate in self._subscriptions.find_subscriptions_by_status(SubscriptionStatus.active):
            if not lapsed(candidate):
                continue
            try:
                self._subscriptions.update_subscription_conditional(
                    candidate.id, lapsed, mark_expired
                )
            except (ConditionNotMet, SubscriptionNotFound):
                # Changed by a concurrent cancel or sweep.
                continue
            expired += 1

        if expired:
            logger.info("Expiry sweep marked %s subscriptions as expired", expired)
        return expired

    # Read helpers -----------------------------------------------------------
    def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = self._subscriptions.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id)
        return subscription

    def history(self, user_id: str) -> List[Subscription]:
        """Every subscription purchased by ``user_id``, newest first."""
        items = self._subscriptions.find_subscriptions_by_user(user_id)
        return sorted(items, key=lambda item: (item.purchase_date, item.id), reverse=True)

    # ------------------------------------------------------------------
    @staticmethod
    def _debit_rejection(current: Subscription, now: datetime) -> InvalidState:
        details = {"subscription_id": current.id}
        if current.status is SubscriptionStatus.cancelled:
            return SubscriptionCancelled(f"Subscription {current.id} has been cancelled.", details)
        if effective_status(current, now) is SubscriptionStatus.expired:
            return SubscriptionExpired(f"Subscription {current.id} has expired.", details)
        if current.credits_remaining <= 0:
            return NoCreditsRemaining(f"Subscription {current.id} has no credits remaining.", details)
        return InvalidState(f"Subscription {current.id} cannot be debited.", details)
