from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from ....application.services.admin_auth_service import AdminAuthService
from ....application.services.subscription_ledger import SubscriptionLedger
from ....core.dependencies import get_admin_auth_service, get_subscription_ledger
from ....domain.models import User
from ...api.dependencies import require_admin_user
from ...api.schemas.admin import AdminLoginRequest

router = APIRouter(prefix="/api/admin", tags=["Administration"])


@router.post("/login")
def admin_login(
    payload: AdminLoginRequest,
    admin_auth: AdminAuthService = Depends(get_admin_auth_service),
) -> dict:
    token = admin_auth.authenticate(payload.email, payload.password)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
def admin_me(current_user: User = Depends(require_admin_user)) -> dict:
    return {
        "id": current_user.id,
        "email": current_user.email,
        "is_active": current_user.is_active,
        "created_at": current_user.created_at.replace(microsecond=0).isoformat(),
    }


@router.post("/subscriptions/expire-sweep")
async def run_expire_sweep(
    now: Optional[datetime] = None,
    _: User = Depends(require_admin_user),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> dict:
    """Mark every lapsed active subscription as expired."""
    expired = await run_in_threadpool(ledger.expire_sweep, now)
    return {"expired": expired}
