from __future__ import annotations

from typing import Optional, Protocol

from ..models import PaymentConfirmation


class PaymentGateway(Protocol):
    """Captures money for a plan purchase before the ledger activates it."""

    def authorize(
        self,
        plan_id: str,
        user_id: str,
        amount: int,
        payment_method_id: Optional[str] = None,
    ) -> PaymentConfirmation:
        ...
