"""Pydantic schemas for membership endpoints.

Request/Response models for:
- Purchasing a membership
- Transaction lookups
- Expiry sweep trigger
- Current membership status
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .gate import AccessDecision
from .models import MembershipType, Transaction, TransactionStatus
from .sweeper import SweepResult


# ==============================================================================
# Request Schemas
# ==============================================================================


class PurchaseRequest(BaseModel):
    """Purchase a membership tier.

    Amount and tier are range-checked by the transaction processor so that
    every rejection goes through the same error taxonomy.
    """

    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal | None = Field(None, description="Amount paid")
    membership_type: str | None = Field(
        None, alias="membershipType", description="Tier being purchased"
    )


# ==============================================================================
# Response Schemas
# ==============================================================================


class TransactionResponse(BaseModel):
    """Response schema for a single transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Transaction ID")
    user_id: UUID
    amount: Decimal
    membership_type: MembershipType
    status: TransactionStatus
    failure_reason: str | None = None
    confirmed_at: datetime | None = None
    membership_expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        """Create response from Transaction entity."""
        return cls(
            id=transaction.transaction_id,
            user_id=transaction.user_id,
            amount=transaction.amount,
            membership_type=transaction.membership_type,
            status=transaction.status,
            failure_reason=transaction.failure_reason,
            confirmed_at=transaction.confirmed_at,
            membership_expires_at=transaction.membership_expires_at,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )


class PurchaseResponse(BaseModel):
    """Response for a successful purchase."""

    message: str = "Transaction successful"
    transaction: TransactionResponse
    membership_expires_at: datetime


class TransactionListResponse(BaseModel):
    """Response schema for purchase history."""

    items: list[TransactionResponse]
    total: int


class SweepResponse(BaseModel):
    """Response for one expiry sweep pass."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    expired_count: int = Field(..., alias="expiredCount")
    failed_count: int = Field(0, alias="failedCount")
    skipped_count: int = Field(0, alias="skippedCount")
    downgraded_user_ids: list[UUID] = Field(
        default_factory=list, alias="downgradedUserIds"
    )
    message: str

    @classmethod
    def from_result(cls, result: SweepResult) -> "SweepResponse":
        """Create response from a SweepResult."""
        message = (
            f"Checked and updated {result.expired_count} expired subscriptions"
        )
        if result.failed_count:
            message += f"; {result.failed_count} failed to update"
        return cls(
            success=result.success,
            expired_count=result.expired_count,
            failed_count=result.failed_count,
            skipped_count=result.skipped_count,
            downgraded_user_ids=result.downgraded_user_ids,
            message=message,
        )


class MembershipStatusResponse(BaseModel):
    """Current membership of the authenticated user."""

    user_id: UUID
    membership_type: MembershipType
    membership_expires_at: datetime | None = None
    subscription_start: datetime | None = None
    has_premium_access: bool = Field(
        ..., description="Whether premium content is currently accessible"
    )

    @classmethod
    def from_decision(
        cls, user_id: UUID, decision: AccessDecision
    ) -> "MembershipStatusResponse":
        """Create response from a gate decision."""
        profile = decision.profile
        if profile is None:
            return cls(
                user_id=user_id,
                membership_type=MembershipType.FREE,
                has_premium_access=False,
            )
        return cls(
            user_id=user_id,
            membership_type=profile.membership_type,
            membership_expires_at=profile.membership_expires_at,
            subscription_start=profile.subscription_start,
            has_premium_access=decision.has_premium_access,
        )
