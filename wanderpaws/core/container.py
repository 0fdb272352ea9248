from dataclasses import dataclass

from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.plan_catalog import PlanCatalog
from ..application.services.subscription_ledger import SubscriptionLedger
from ..domain.ports.persistence import PersistenceGateway
from ..services.expiry_sweeper import ExpirySweeper
from ..services.payment_notifications import PaymentNotificationHandler
from ..services.stripe_service import StripeService
from .config import Settings


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    plan_catalog: PlanCatalog
    subscription_ledger: SubscriptionLedger
    stripe_service: StripeService
    payment_notifications: PaymentNotificationHandler
    admin_auth_service: AdminAuthService
    expiry_sweeper: ExpirySweeper
