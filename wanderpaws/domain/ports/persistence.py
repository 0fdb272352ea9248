from __future__ import annotations

from typing import Callable, List, Optional, Protocol

from ..models import PaymentRecord, Plan, Subscription, SubscriptionStatus, User

SubscriptionPredicate = Callable[[Subscription], bool]
SubscriptionMutation = Callable[[Subscription], Subscription]


class PlanRepository(Protocol):
    """Read access to plan definitions, plus the administrative upsert used for seeding."""

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        ...

    def list_plans(self, active_only: bool = False) -> List[Plan]:
        ...

    def save_plan(self, plan: Plan) -> Plan:
        ...


class SubscriptionRepository(Protocol):
    """Durable storage for subscriptions.

    ``update_subscription_conditional`` must evaluate ``predicate`` and apply
    ``mutation`` inside a single write transaction keyed on the subscription id.
    It raises ``SubscriptionNotFound`` for unknown ids and ``ConditionNotMet``
    when the predicate is false. Transport failures surface as ``StoreUnavailable``.

    ``insert_subscription`` writes ``payment`` in the same transaction as the
    subscription. A reference that already activated a subscription raises
    ``DuplicatePayment`` and nothing is written.
    """

    def insert_subscription(
        self, subscription: Subscription, payment: Optional[PaymentRecord] = None
    ) -> Subscription:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def update_subscription_conditional(
        self,
        subscription_id: str,
        predicate: SubscriptionPredicate,
        mutation: SubscriptionMutation,
    ) -> Subscription:
        ...

    def find_subscriptions_by_user(self, user_id: str) -> List[Subscription]:
        ...

    def find_subscriptions_by_status(self, status: SubscriptionStatus) -> List[Subscription]:
        ...


class PaymentRepository(Protocol):
    """Ledger of payment references already seen from the gateway."""

    def record_payment(self, record: PaymentRecord) -> bool:
        """Store ``record``; return False when the reference already exists."""
        ...

    def update_payment(
        self,
        reference: str,
        *,
        status: str,
        subscription_id: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        ...

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        ...


class UserRepository(Protocol):
    """Persistence functions related to administrator accounts."""

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        ...

    def create_user(self, email: str, password_hash: str) -> User:
        ...


class PersistenceGateway(
    PlanRepository,
    SubscriptionRepository,
    PaymentRepository,
    UserRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    pass
