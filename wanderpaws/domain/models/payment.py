from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True, frozen=True)
class PaymentConfirmation:
    """Outcome reported by the payment gateway for a single charge."""

    success: bool
    reference: Optional[str] = None
    amount: Optional[int] = None


@dataclass(slots=True)
class PaymentRecord:
    reference: str
    status: str
    amount: Optional[int]
    subscription_id: Optional[str]
    created_at: datetime
    updated_at: datetime
