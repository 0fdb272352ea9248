"""Pydantic schemas for plan and subscription API endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class PurchaseRequest(BaseModel):
    """Immediate purchase charged against a saved payment method."""

    plan_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    owner_id: Optional[str] = Field(None, description="Dog owner the credits belong to; defaults to user_id")
    payment_method_id: Optional[str] = Field(None, description="Stripe PaymentMethod ID")


class CheckoutRequest(BaseModel):
    """Hosted Stripe Checkout purchase, completed by webhook."""

    plan_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    owner_id: Optional[str] = None
    customer_email: EmailStr


class CheckoutResponse(BaseModel):
    checkout_url: str


class PlanResponse(BaseModel):
    id: str
    name: str
    description: str
    walk_credits: int
    walk_duration: int
    price: int
    price_display: str
    price_per_walk_display: str
    validity_period: int
    is_active: bool
    discount_percentage: Optional[int]


class SubscriptionResponse(BaseModel):
    id: str
    plan_id: str
    plan_name: str
    user_id: str
    owner_id: str
    status: str
    effective_status: str
    is_usable: bool
    purchase_date: datetime
    end_date: datetime
    total_credits: int
    credits_remaining: int
    purchase_amount: int
    walk_duration: int
    payment_reference: Optional[str]
