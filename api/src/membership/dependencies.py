"""Dependency injection for membership module."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.auth.dependencies import CurrentUser
from src.auth.schemas import AuthenticatedUser
from src.config.settings import Settings, get_settings
from src.core.redis import get_redis

from .exceptions import StoreError
from .gate import EntitlementGate
from .service import TransactionProcessor
from .store import EntitlementStore
from .sweeper import ExpirySweeper


def get_entitlement_store(request: Request) -> EntitlementStore:
    """Get the EntitlementStore created at startup (app.state)."""
    store = getattr(request.app.state, "entitlement_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Membership store not initialized",
        )
    return store


EntitlementStoreDep = Annotated[EntitlementStore, Depends(get_entitlement_store)]


def get_transaction_processor(
    request: Request,
    store: EntitlementStoreDep,
    settings: Annotated[Settings, Depends(get_settings)],
) -> TransactionProcessor:
    """Get TransactionProcessor instance."""
    return TransactionProcessor(
        store=store,
        payment_confirmer=getattr(request.app.state, "payment_confirmer", None),
        redis=get_redis(),
        duration_months=settings.membership_duration_months,
        purchasable_tiers=settings.membership_purchasable_tiers,
        cas_max_retries=settings.membership_cas_max_retries,
        lock_timeout=settings.membership_purchase_lock_timeout,
    )


def get_expiry_sweeper(
    store: EntitlementStoreDep,
    settings: Annotated[Settings, Depends(get_settings)],
) -> ExpirySweeper:
    """Get ExpirySweeper instance."""
    return ExpirySweeper(store=store, page_size=settings.membership_sweep_page_size)


def get_entitlement_gate(store: EntitlementStoreDep) -> EntitlementGate:
    """Get EntitlementGate instance."""
    return EntitlementGate(store=store)


TransactionProcessorDep = Annotated[
    TransactionProcessor, Depends(get_transaction_processor)
]
ExpirySweeperDep = Annotated[ExpirySweeper, Depends(get_expiry_sweeper)]
EntitlementGateDep = Annotated[EntitlementGate, Depends(get_entitlement_gate)]


# ==============================================================================
# Content Gating
# ==============================================================================


async def require_premium_access(
    user: CurrentUser,
    gate: EntitlementGateDep,
) -> AuthenticatedUser:
    """Allow only users with live premium membership.

    Attach to premium lesson/video routes:

        @router.get("/lessons/{lesson_id}/video")
        async def lesson_video(lesson_id: UUID, user: PremiumUser): ...
    """
    try:
        allowed = await gate.has_premium_access(user.id)
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Membership status unavailable",
        ) from e

    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Premium membership required",
        )
    return user


PremiumUser = Annotated[AuthenticatedUser, Depends(require_premium_access)]
