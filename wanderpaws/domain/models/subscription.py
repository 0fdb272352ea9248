"""Subscription domain model: a user's purchased plan and its credit balance."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SubscriptionStatus(str, Enum):
    active = "active"
    cancelled = "cancelled"
    expired = "expired"


@dataclass(slots=True)
class Subscription:
    """
    Subscription entity owned by the ledger.

    Plan terms (credits, price, duration) are copied at purchase time so later
    edits to the plan never change a subscription that was already sold.

    Attributes:
        id: Unique identifier
        plan_id: Plan the subscription was purchased from
        plan_name: Plan name at purchase time
        user_id: Account that purchased the subscription
        owner_id: Dog owner the credits belong to
        status: Persisted lifecycle status
        purchase_date: Activation timestamp
        end_date: Expiry timestamp (truncated to the cancellation time on cancel)
        total_credits: Credits granted at purchase
        credits_remaining: Credits still available
        purchase_amount: Amount paid, in pence
        walk_duration: Walk length in minutes at purchase time
        payment_reference: Gateway reference of the confirming payment
    """

    id: str
    plan_id: str
    plan_name: str
    user_id: str
    owner_id: str
    status: SubscriptionStatus
    purchase_date: datetime
    end_date: datetime
    total_credits: int
    credits_remaining: int
    purchase_amount: int
    walk_duration: int
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} status={self.status.value} "
            f"credits={self.credits_remaining}/{self.total_credits}>"
        )


def is_usable(subscription: Subscription, now: datetime) -> bool:
    """A subscription can be debited when active, unexpired and not exhausted."""
    return (
        subscription.status is SubscriptionStatus.active
        and subscription.end_date > now
        and subscription.credits_remaining > 0
    )


def effective_status(subscription: Subscription, now: datetime) -> SubscriptionStatus:
    """Persisted status with time-based expiry applied."""
    if subscription.status is SubscriptionStatus.active and subscription.end_date <= now:
        return SubscriptionStatus.expired
    return subscription.status
