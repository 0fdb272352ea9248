"""Domain models for the WanderPaws subscription ledger."""

from .payment import PaymentConfirmation, PaymentRecord
from .plan import Plan, format_price
from .subscription import Subscription, SubscriptionStatus, effective_status, is_usable
from .user import User

__all__ = [
    "PaymentConfirmation",
    "PaymentRecord",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "User",
    "effective_status",
    "format_price",
    "is_usable",
]
