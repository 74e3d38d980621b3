"""HTTP endpoints for memberships.

Provides:
- POST /transactions - Purchase a membership
- GET  /transactions - Caller's purchase history
- GET  /transactions/{transaction_id} - Transaction status (safe retry check)
- POST /transactions/{transaction_id}/reapply - Admin: retry profile update
- POST /subscriptions/check-expiry - Scheduler: downgrade expired memberships
- GET  /membership/me - Current membership
- GET  /membership/premium-check - 200 if premium content is accessible
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import ORJSONResponse

from src.auth.dependencies import AdminUser, CurrentUser, MasterApiKey, OptionalUser
from src.config.settings import Settings, get_settings
from src.core.redis import SWEEP_LOCK_NAME, LockNotAcquiredError, get_redis, redis_lock
from src.utils.dates import utc_now

from .dependencies import (
    EntitlementGateDep,
    ExpirySweeperDep,
    PremiumUser,
    TransactionProcessorDep,
)
from .exceptions import ConcurrentUpdateError
from .gate import AccessDecision
from .schemas import (
    MembershipStatusResponse,
    PurchaseRequest,
    PurchaseResponse,
    SweepResponse,
    TransactionListResponse,
    TransactionResponse,
)


transactions_router = APIRouter(prefix="/transactions", tags=["transactions"])
subscriptions_router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
membership_router = APIRouter(prefix="/membership", tags=["membership"])


# ==============================================================================
# Transactions
# ==============================================================================


@transactions_router.post(
    "",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Purchase a membership",
)
async def purchase_membership(
    data: PurchaseRequest,
    processor: TransactionProcessorDep,
    current_user: OptionalUser,
) -> PurchaseResponse:
    """Pay for a membership tier and upgrade the caller's profile.

    On a timeout, check `GET /transactions/{id}` before retrying: every
    call creates a new transaction.
    """
    result = await processor.purchase(
        user_id=current_user.id if current_user else None,
        amount=data.amount,
        membership_type=data.membership_type,
    )
    return PurchaseResponse(
        transaction=TransactionResponse.from_transaction(result.transaction),
        membership_expires_at=result.membership_expires_at,
    )


@transactions_router.get(
    "",
    response_model=TransactionListResponse,
    summary="List my transactions",
)
async def list_my_transactions(
    processor: TransactionProcessorDep,
    current_user: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> TransactionListResponse:
    """Purchase history of the caller, newest first."""
    transactions = await processor.list_transactions(current_user.id, limit=limit)
    items = [TransactionResponse.from_transaction(t) for t in transactions]
    return TransactionListResponse(items=items, total=len(items))


@transactions_router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a transaction",
)
async def get_transaction(
    transaction_id: UUID,
    processor: TransactionProcessorDep,
    current_user: CurrentUser,
) -> TransactionResponse:
    """Get one of the caller's transactions (admins can see any)."""
    transaction = await processor.get_transaction(
        transaction_id,
        requester_id=current_user.id,
        requester_is_admin=current_user.is_admin,
    )
    return TransactionResponse.from_transaction(transaction)


@transactions_router.post(
    "/{transaction_id}/reapply",
    response_model=MembershipStatusResponse,
    summary="Re-apply a successful transaction to its profile",
)
async def reapply_transaction(
    transaction_id: UUID,
    processor: TransactionProcessorDep,
    _: AdminUser,
) -> MembershipStatusResponse:
    """Recover a purchase whose payment succeeded but profile update failed."""
    profile = await processor.reapply_transaction(transaction_id)
    decision = AccessDecision(
        has_premium_access=profile.is_entitled(utc_now()),
        profile=profile,
    )
    return MembershipStatusResponse.from_decision(profile.user_id, decision)


# ==============================================================================
# Scheduler
# ==============================================================================


@subscriptions_router.post(
    "/check-expiry",
    response_model=SweepResponse,
    response_model_by_alias=True,
    summary="Downgrade expired memberships",
)
async def check_expiry(
    _: MasterApiKey,
    sweeper: ExpirySweeperDep,
    settings: Annotated[Settings, Depends(get_settings)],
) -> SweepResponse | ORJSONResponse:
    """Run one expiry sweep.

    Returns 500 when the scan fails or any profile could not be updated;
    the body still carries the counts in the latter case.
    """
    try:
        async with redis_lock(
            get_redis(),
            SWEEP_LOCK_NAME,
            settings.membership_sweep_lock_timeout,
            blocking_timeout=0,
        ):
            result = await sweeper.sweep(utc_now())
    except LockNotAcquiredError as e:
        raise ConcurrentUpdateError("An expiry sweep is already running") from e

    response = SweepResponse.from_result(result)
    if not result.success:
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json", by_alias=True),
        )
    return response


# ==============================================================================
# Membership status
# ==============================================================================


@membership_router.get(
    "/me",
    response_model=MembershipStatusResponse,
    summary="Get my membership",
)
async def get_my_membership(
    gate: EntitlementGateDep,
    current_user: CurrentUser,
) -> MembershipStatusResponse:
    """Current tier, expiry and whether premium content is accessible."""
    decision = await gate.describe_access(current_user.id)
    return MembershipStatusResponse.from_decision(current_user.id, decision)


@membership_router.get("/premium-check", summary="Check premium access")
async def premium_check(current_user: PremiumUser) -> dict[str, str | bool]:
    return {"user_id": str(current_user.id), "has_premium_access": True}
