"""Plan catalogue and subscription ledger endpoints."""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, status

from ....application.services.plan_catalog import PlanCatalog
from ....application.services.subscription_ledger import SubscriptionLedger
from ....core.dependencies import (
    get_payment_gateway,
    get_payment_notifications,
    get_plan_catalog,
    get_stripe_service,
    get_subscription_ledger,
)
from ....domain.models import Plan, Subscription, effective_status, format_price, is_usable
from ....domain.ports.payments import PaymentGateway
from ....services.payment_notifications import PaymentNotificationHandler
from ....services.stripe_service import StripeService
from ...api.schemas.subscription_schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PlanResponse,
    PurchaseRequest,
    SubscriptionResponse,
)

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


# ============ PLANS ============

@router.get("/plans", response_model=List[PlanResponse])
def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)) -> List[PlanResponse]:
    """Plans currently on sale, cheapest first."""
    return [_plan_response(plan) for plan in catalog.list_active()]


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: str, catalog: PlanCatalog = Depends(get_plan_catalog)) -> PlanResponse:
    return _plan_response(catalog.get_by_id(plan_id))


# ============ PURCHASE ============

@router.post("/purchase", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def purchase_subscription(
    payload: PurchaseRequest,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    payments: PaymentNotificationHandler = Depends(get_payment_notifications),
) -> SubscriptionResponse:
    """Charge the payment method and activate the plan once the charge succeeds."""
    plan = ledger.purchasable_plan(payload.plan_id)
    confirmation = gateway.authorize(
        plan.id, payload.user_id, plan.price, payload.payment_method_id
    )
    subscription = payments.on_charge_captured(
        confirmation, plan_id=plan.id, user_id=payload.user_id, owner_id=payload.owner_id
    )
    return _subscription_response(subscription, ledger.now())


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout_session(
    payload: CheckoutRequest,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> CheckoutResponse:
    """Start a hosted Stripe Checkout; the webhook activates the subscription."""
    plan = ledger.purchasable_plan(payload.plan_id)
    url = stripe_service.create_checkout_session(
        plan, payload.user_id, payload.owner_id, str(payload.customer_email)
    )
    return CheckoutResponse(checkout_url=url)


# ============ USERS ============

@router.get("/users/{user_id}/usable", response_model=List[SubscriptionResponse])
def list_usable_subscriptions(
    user_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> List[SubscriptionResponse]:
    now = ledger.now()
    return [_subscription_response(item, now) for item in ledger.get_usable(user_id)]


@router.get("/users/{user_id}/history", response_model=List[SubscriptionResponse])
def subscription_history(
    user_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> List[SubscriptionResponse]:
    now = ledger.now()
    return [_subscription_response(item, now) for item in ledger.history(user_id)]


# ============ SUBSCRIPTIONS ============

@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> SubscriptionResponse:
    return _subscription_response(ledger.get_subscription(subscription_id), ledger.now())


@router.post("/{subscription_id}/debit", response_model=SubscriptionResponse)
def debit_credit(
    subscription_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> SubscriptionResponse:
    """Consume one walk credit for a completed walk."""
    return _subscription_response(ledger.debit_credit(subscription_id), ledger.now())


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> SubscriptionResponse:
    """Cancel immediately; remaining credits are forfeited."""
    return _subscription_response(ledger.cancel(subscription_id), ledger.now())


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        name=plan.name,
        description=plan.description,
        walk_credits=plan.walk_credits,
        walk_duration=plan.walk_duration,
        price=plan.price,
        price_display=format_price(plan.price),
        price_per_walk_display=format_price(plan.price_per_walk),
        validity_period=plan.validity_period,
        is_active=plan.is_active,
        discount_percentage=plan.discount_percentage,
    )


def _subscription_response(subscription: Subscription, now: datetime) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        plan_id=subscription.plan_id,
        plan_name=subscription.plan_name,
        user_id=subscription.user_id,
        owner_id=subscription.owner_id,
        status=subscription.status.value,
        effective_status=effective_status(subscription, now).value,
        is_usable=is_usable(subscription, now),
        purchase_date=subscription.purchase_date,
        end_date=subscription.end_date,
        total_credits=subscription.total_credits,
        credits_remaining=subscription.credits_remaining,
        purchase_amount=subscription.purchase_amount,
        walk_duration=subscription.walk_duration,
        payment_reference=subscription.payment_reference,
    )
