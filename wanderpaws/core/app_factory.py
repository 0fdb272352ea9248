from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.plan_catalog import PlanCatalog
from ..application.services.subscription_ledger import SubscriptionLedger
from ..domain.errors import LedgerError
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import admin as admin_router
from ..presentation.api.routers import stripe_webhook as stripe_webhook_router
from ..presentation.api.routers import subscriptions as subscriptions_router
from ..services.expiry_sweeper import ExpirySweeper
from ..services.payment_notifications import PaymentNotificationHandler
from ..services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="WanderPaws Subscription Ledger", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, _ledger_error_handler)

    app.include_router(admin_router.router)
    app.include_router(stripe_webhook_router.router)
    app.include_router(subscriptions_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {"ok": True, "stripe": container.stripe_service.is_configured}

    return app


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        persistence = SQLitePersistence(settings.database_path)
        plan_catalog = PlanCatalog(persistence)
        ledger = SubscriptionLedger(persistence, plan_catalog)
        stripe_service = StripeService(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            currency=settings.stripe_currency,
            frontend_base_url=settings.frontend_base_url,
        )
        admin_auth_service = AdminAuthService(
            users=persistence,
            secret_key=settings.admin_token_secret,
            token_exp_minutes=settings.admin_token_exp_minutes,
        )
        admin_auth_service.ensure_default_admin(
            settings.admin_default_email, settings.admin_default_password
        )
        expiry_sweeper = ExpirySweeper(ledger, settings.expiry_sweep_interval_seconds)

        app.state.container = ApplicationContainer(  # type: ignore[attr-defined]
            settings=settings,
            persistence=persistence,
            plan_catalog=plan_catalog,
            subscription_ledger=ledger,
            stripe_service=stripe_service,
            payment_notifications=PaymentNotificationHandler(ledger, persistence),
            admin_auth_service=admin_auth_service,
            expiry_sweeper=expiry_sweeper,
        )

        await expiry_sweeper.start()
        try:
            yield
        finally:
            await expiry_sweeper.stop()
            persistence.close()

    return lifespan
