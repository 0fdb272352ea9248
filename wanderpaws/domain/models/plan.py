"""Plan domain model describing a purchasable bundle of walk credits."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class Plan:
    """
    Plan entity offered in the catalogue.

    Attributes:
        id: Opaque unique identifier
        name: Display name ("Basic", "Premium", ...)
        description: Display description
        walk_credits: Number of walks a purchase grants
        walk_duration: Duration of each walk in minutes (informational)
        price: Price in minor currency units (pence)
        validity_period: Days from activation until the subscription ends
        is_active: Whether the plan can currently be purchased
        discount_percentage: Optional advertised discount, 0-100
    """

    id: str
    name: str
    description: str
    walk_credits: int
    walk_duration: int
    price: int
    validity_period: int
    is_active: bool = True
    discount_percentage: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Plan id is required.")
        if self.walk_credits <= 0:
            raise ValueError("walk_credits must be a positive integer.")
        if self.walk_duration <= 0:
            raise ValueError("walk_duration must be a positive integer.")
        if self.price < 0:
            raise ValueError("price cannot be negative.")
        if self.validity_period <= 0:
            raise ValueError("validity_period must be a positive number of days.")
        if self.discount_percentage is not None and not 0 <= self.discount_percentage <= 100:
            raise ValueError("discount_percentage must be between 0 and 100.")

    @property
    def price_per_walk(self) -> float:
        return self.price / self.walk_credits


def format_price(pence: float) -> str:
    """Render an amount in pence as a sterling string, e.g. ``2999 -> "£29.99"``."""
    return f"£{pence / 100:.2f}"
