import threading
from dataclasses import replace
from datetime import datetime, timezone
from itertools import count
from typing import Dict, List, Optional

from ...domain.errors import ConditionNotMet, DuplicatePayment, SubscriptionNotFound
from ...domain.models import PaymentRecord, Plan, Subscription, SubscriptionStatus, User
from ...domain.ports.persistence import (
    PersistenceGateway,
    SubscriptionMutation,
    SubscriptionPredicate,
)


class InMemoryPersistence(PersistenceGateway):
    """Process-local persistence gateway guarded by a single lock.

    Returned entities are copies so callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._plans: Dict[str, Plan] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._payments: Dict[str, PaymentRecord] = {}
        self._users: Dict[int, User] = {}
        self._user_ids = count(1)

    def close(self) -> None:
        pass

    # PlanRepository API -----------------------------------------------------
    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._lock:
            plan = self._plans.get(plan_id)
            return replace(plan) if plan else None

    def list_plans(self, active_only: bool = False) -> List[Plan]:
        with self._lock:
            plans = [replace(plan) for plan in self._plans.values()]
        if active_only:
            plans = [plan for plan in plans if plan.is_active]
        return sorted(plans, key=lambda plan: (plan.price, plan.id))

    def save_plan(self, plan: Plan) -> Plan:
        now = _now()
        with self._lock:
            existing = self._plans.get(plan.id)
            created_at = existing.created_at if existing else (plan.created_at or now)
            stored = replace(plan, created_at=created_at, updated_at=now)
            self._plans[plan.id] = stored
            return replace(stored)

    # SubscriptionRepository API ---------------------------------------------
    def insert_subscription(
        self, subscription: Subscription, payment: Optional[PaymentRecord] = None
    ) -> Subscription:
        now = _now()
        with self._lock:
            if subscription.id in self._subscriptions:
                raise ValueError(f"Subscription {subscription.id} already exists.")
            if payment is not None:
                existing = self._payments.get(payment.reference)
                if existing and (existing.subscription_id or existing.status == "succeeded"):
                    raise DuplicatePayment(payment.reference)
                created_at = existing.created_at if existing else payment.created_at
                self._payments[payment.reference] = replace(payment, created_at=created_at)
            stored = replace(
                subscription,
                created_at=subscription.created_at or now,
                updated_at=subscription.updated_at or now,
            )
            self._subscriptions[stored.id] = stored
            return replace(stored)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return replace(subscription) if subscription else None

    def update_subscription_conditional(
        self,
        subscription_id: str,
        predicate: SubscriptionPredicate,
        mutation: SubscriptionMutation,
    ) -> Subscription:
        with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                raise SubscriptionNotFound(subscription_id)
            if not predicate(replace(current)):
                raise ConditionNotMet(replace(current))
            updated = mutation(replace(current))
            if not 0 <= updated.credits_remaining <= updated.total_credits:
                raise ValueError("credits_remaining out of range.")
            self._subscriptions[subscription_id] = replace(
                current,
                status=updated.status,
                end_date=updated.end_date,
                credits_remaining=updated.credits_remaining,
                updated_at=updated.updated_at or _now(),
            )
            return replace(self._subscriptions[subscription_id])

    def find_subscriptions_by_user(self, user_id: str) -> List[Subscription]:
        with self._lock:
            items = [replace(s) for s in self._subscriptions.values() if s.user_id == user_id]
        return sorted(items, key=lambda s: s.purchase_date, reverse=True)

    def find_subscriptions_by_status(self, status: SubscriptionStatus) -> List[Subscription]:
        with self._lock:
            items = [replace(s) for s in self._subscriptions.values() if s.status is status]
        return sorted(items, key=lambda s: s.end_date)

    # PaymentRepository API --------------------------------------------------
    def record_payment(self, record: PaymentRecord) -> bool:
        with self._lock:
            if record.reference in self._payments:
                return False
            self._payments[record.reference] = replace(record)
            return True

    def update_payment(
        self,
        reference: str,
        *,
        status: str,
        subscription_id: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        with self._lock:
            record = self._payments.get(reference)
            if record is None:
                return None
            record.status = status
            record.updated_at = _now()
            if subscription_id is not None:
                record.subscription_id = subscription_id
            return replace(record)

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        with self._lock:
            record = self._payments.get(reference)
            return replace(record) if record else None

    # UserRepository API ----------------------------------------------------
    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.lower()
        with self._lock:
            for user in self._users.values():
                if user.email == normalized:
                    return replace(user)
        return None

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def create_user(self, email: str, password_hash: str) -> User:
        now = _now()
        with self._lock:
            user = User(
                id=next(self._user_ids),
                email=email.lower(),
                password_hash=password_hash,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            return replace(user)


def _now() -> datetime:
    return datetime.now(timezone.utc)
