"""Error taxonomy shared by the ledger, its stores and the HTTP layer.

Every failure a caller can act on is a ``LedgerError`` subclass carrying the
HTTP status and a stable error code, so the API layer can serialise it without
inspecting the message.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import status

from .models.subscription import Subscription


class LedgerError(Exception):
    """Base class for every typed failure raised by the service."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "LEDGER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


# Lookups --------------------------------------------------------------------
class NotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class PlanNotFound(NotFound):
    error_code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id} not found.", {"plan_id": plan_id})


class SubscriptionNotFound(NotFound):
    error_code = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            f"Subscription {subscription_id} not found.", {"subscription_id": subscription_id}
        )


# State transitions ------------------------------------------------------------
class InvalidState(LedgerError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "INVALID_STATE"


class PlanInactive(InvalidState):
    error_code = "PLAN_INACTIVE"

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id} is not available for purchase.", {"plan_id": plan_id})


class SubscriptionExpired(InvalidState):
    error_code = "SUBSCRIPTION_EXPIRED"


class SubscriptionCancelled(InvalidState):
    error_code = "SUBSCRIPTION_CANCELLED"


class NoCreditsRemaining(InvalidState):
    error_code = "NO_CREDITS_REMAINING"


# Payments -------------------------------------------------------------------
class PaymentRequired(LedgerError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    error_code = "PAYMENT_REQUIRED"


class PaymentGatewayError(LedgerError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "PAYMENT_GATEWAY_ERROR"


class DuplicatePayment(InvalidState):
    error_code = "DUPLICATE_PAYMENT"

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"Payment {reference} has already activated a subscription.", {"reference": reference}
        )


class InvalidWebhookSignature(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_WEBHOOK_SIGNATURE"


# Infrastructure ---------------------------------------------------------------
class StoreUnavailable(LedgerError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "STORE_UNAVAILABLE"


class ConditionNotMet(Exception):
    """Raised by a store when a conditional update's predicate is false.

    ``current`` is the row as read inside the rejected transaction.
    """

    def __init__(self, current: Subscription) -> None:
        self.current = current
        super().__init__(f"Condition not met for subscription {current.id}.")
