"""Transaction processor.

Business logic for:
- Purchasing a membership (transaction + payment + profile upgrade)
- Transaction status lookups (safe retries after a timeout)
- Re-applying a successful transaction whose profile update failed
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any
from uuid import UUID

from src.core.logging import get_logger
from src.core.redis import LockNotAcquiredError, purchase_lock_name, redis_lock
from src.utils.dates import add_months, utc_now

from .exceptions import (
    ConcurrentUpdateError,
    MembershipValidationError,
    PaymentFailedError,
    ProfileNotFoundError,
    ProfileUpdateError,
    StoreError,
    TransactionNotFoundError,
    TransactionStateError,
    UnauthorizedError,
)
from .models import (
    MembershipType,
    Profile,
    Transaction,
    TransactionStatus,
    create_pending_transaction,
)
from .payments import PaymentConfirmer, PaymentOutcome, SimulatedPaymentConfirmer


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from .store import EntitlementStore


logger = get_logger(__name__)

DEFAULT_DURATION_MONTHS = 1
DEFAULT_CAS_RETRIES = 5


@dataclass(frozen=True)
class PurchaseResult:
    """Outcome of a successful purchase."""

    transaction: Transaction
    membership_expires_at: datetime


def _grants_at_least(profile: Profile, expires_at: datetime | None) -> bool:
    """Profile already holds premium lasting at least until `expires_at`."""
    if not profile.is_premium:
        return False
    if profile.membership_expires_at is None:
        return True
    return expires_at is not None and profile.membership_expires_at >= expires_at


class TransactionProcessor:
    """Records purchases and grants premium membership."""

    def __init__(
        self,
        store: "EntitlementStore",
        payment_confirmer: PaymentConfirmer | None = None,
        redis: "Redis | None" = None,
        duration_months: int = DEFAULT_DURATION_MONTHS,
        purchasable_tiers: Iterable[MembershipType | str] = (MembershipType.PREMIUM,),
        cas_max_retries: int = DEFAULT_CAS_RETRIES,
        lock_timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize with the entitlement store and collaborators."""
        self.store = store
        self.payment_confirmer = payment_confirmer or SimulatedPaymentConfirmer()
        self.redis = redis
        self.duration_months = duration_months
        self.purchasable_tiers = frozenset(
            MembershipType(tier) for tier in purchasable_tiers
        )
        self.cas_max_retries = cas_max_retries
        self.lock_timeout = lock_timeout
        self.clock = clock

    # ==========================================================================
    # Validation
    # ==========================================================================

    @staticmethod
    def _validate_amount(amount: Any) -> Decimal:
        if amount is None or isinstance(amount, bool):
            raise MembershipValidationError("amount is required")
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise MembershipValidationError("amount must be a number") from e
        if not value.is_finite() or value <= 0:
            raise MembershipValidationError("amount must be greater than zero")
        return value

    def _validate_tier(self, membership_type: Any) -> MembershipType:
        try:
            tier = MembershipType(membership_type)
        except ValueError as e:
            msg = f"Unknown membership type: {membership_type!r}"
            raise MembershipValidationError(msg) from e
        if tier not in self.purchasable_tiers:
            msg = f"Membership type {tier.value!r} cannot be purchased"
            raise MembershipValidationError(msg)
        return tier

    # ==========================================================================
    # Purchase
    # ==========================================================================

    async def purchase(
        self,
        user_id: UUID | None,
        amount: Any,
        membership_type: Any,
    ) -> PurchaseResult:
        """Purchase a membership for an authenticated user.

        Steps:
        1. Insert a pending transaction
        2. Confirm payment
        3. Success: mark transaction success, upgrade profile
           Failure: mark transaction failed, profile untouched

        Args:
            user_id: Authenticated user (None = no session)
            amount: Positive amount paid
            membership_type: Tier being purchased

        Returns:
            PurchaseResult with the final transaction and the new expiry

        Raises:
            UnauthorizedError: No authenticated user
            MembershipValidationError: Bad amount or tier (nothing written)
            PaymentFailedError: Payment declined or confirmation errored
                (transaction marked failed)
            StoreError: Persistence failure; `step` tells which one
            ProfileUpdateError: Transaction is success but profile update failed
        """
        if user_id is None:
            raise UnauthorizedError

        value = self._validate_amount(amount)
        tier = self._validate_tier(membership_type)

        try:
            async with redis_lock(
                self.redis, purchase_lock_name(str(user_id)), self.lock_timeout
            ):
                return await self._purchase(user_id, value, tier)
        except LockNotAcquiredError as e:
            raise ConcurrentUpdateError(
                "Another purchase for this user is in progress"
            ) from e

    async def _purchase(
        self,
        user_id: UUID,
        amount: Decimal,
        tier: MembershipType,
    ) -> PurchaseResult:
        await self.store.ensure_profile(user_id)

        transaction = await self.store.create_transaction(
            create_pending_transaction(user_id, amount, tier)
        )
        tid = transaction.transaction_id
        logger.info(
            "transaction_created",
            transaction_id=str(tid),
            user_id=str(user_id),
            amount=str(amount),
            membership_type=tier.value,
        )

        try:
            outcome = await self.payment_confirmer.confirm(transaction)
        except Exception as e:
            # Gateway errors settle the transaction as failed, never pending
            logger.error(
                "payment_confirmation_error",
                transaction_id=str(tid),
                user_id=str(user_id),
                error=str(e),
            )
            outcome = PaymentOutcome.declined(f"Payment confirmation failed: {e}")
        confirmed_at = self.clock()

        if not outcome.approved:
            await self.store.update_transaction_status(
                transaction,
                TransactionStatus.FAILED,
                confirmed_at=confirmed_at,
                failure_reason=outcome.reason,
            )
            logger.warning(
                "payment_declined",
                transaction_id=str(tid),
                user_id=str(user_id),
                reason=outcome.reason,
            )
            raise PaymentFailedError(tid, outcome.reason)

        expires_at = add_months(confirmed_at, self.duration_months)
        transaction = await self.store.update_transaction_status(
            transaction,
            TransactionStatus.SUCCESS,
            confirmed_at=confirmed_at,
            membership_expires_at=expires_at,
        )

        await self._upgrade_profile_or_raise(transaction)

        logger.info(
            "purchase_completed",
            transaction_id=str(tid),
            user_id=str(user_id),
            membership_type=tier.value,
            membership_expires_at=expires_at.isoformat(),
        )

        return PurchaseResult(transaction=transaction, membership_expires_at=expires_at)

    async def _upgrade_profile_or_raise(self, transaction: Transaction) -> Profile:
        try:
            return await self._apply_to_profile(transaction)
        except (StoreError, ConcurrentUpdateError, ProfileNotFoundError) as e:
            logger.error(
                "profile_update_failed",
                transaction_id=str(transaction.transaction_id),
                user_id=str(transaction.user_id),
                error=str(e),
            )
            raise ProfileUpdateError(transaction.transaction_id) from e

    async def _apply_to_profile(self, transaction: Transaction) -> Profile:
        """Reflect a successful transaction on the profile (CAS with retries).

        Never moves the expiry backwards: if the profile already holds an
        entitlement lasting at least as long, it is left as is.
        """
        for attempt in range(1, self.cas_max_retries + 1):
            profile = await self.store.get_profile(transaction.user_id)

            if profile.last_transaction_id == transaction.transaction_id or (
                _grants_at_least(profile, transaction.membership_expires_at)
            ):
                logger.info(
                    "profile_upgrade_not_needed",
                    transaction_id=str(transaction.transaction_id),
                    user_id=str(transaction.user_id),
                )
                return profile

            fields = {
                "membership_type": transaction.membership_type,
                "membership_expires_at": transaction.membership_expires_at,
                "subscription_start": transaction.confirmed_at,
                "last_transaction_id": transaction.transaction_id,
                "updated_at": self.clock(),
            }
            try:
                version = await self.store.update_profile(
                    transaction.user_id, fields, profile.version
                )
            except ConcurrentUpdateError:
                logger.info(
                    "profile_cas_conflict",
                    user_id=str(transaction.user_id),
                    attempt=attempt,
                )
                continue

            return profile.with_changes(**fields, version=version)

        raise ConcurrentUpdateError

    # ==========================================================================
    # Lookups / Reconciliation
    # ==========================================================================

    async def get_transaction(
        self,
        transaction_id: UUID,
        requester_id: UUID,
        requester_is_admin: bool = False,
    ) -> Transaction:
        """Get a transaction visible to the requester.

        Other users' transactions are reported as not found.
        """
        transaction = await self.store.get_transaction(transaction_id)
        if not requester_is_admin and transaction.user_id != requester_id:
            raise TransactionNotFoundError
        return transaction

    async def list_transactions(
        self,
        user_id: UUID,
        limit: int = 50,
    ) -> list[Transaction]:
        """Purchase history of a user, newest first."""
        return await self.store.list_user_transactions(user_id, limit)

    async def reapply_transaction(self, transaction_id: UUID) -> Profile:
        """Retry the profile update of a successful transaction.

        Idempotent: a profile that already reflects this (or a later)
        entitlement is returned unchanged.

        Raises:
            TransactionNotFoundError: Unknown transaction
            TransactionStateError: Transaction is not successful
            ProfileUpdateError: The update failed again
        """
        transaction = await self.store.get_transaction(transaction_id)
        if transaction.status != TransactionStatus.SUCCESS:
            raise TransactionStateError(
                transaction_id,
                f"Transaction is {transaction.status.value}; only successful "
                "transactions can be re-applied",
            )

        try:
            async with redis_lock(
                self.redis,
                purchase_lock_name(str(transaction.user_id)),
                self.lock_timeout,
            ):
                await self.store.ensure_profile(transaction.user_id)
                profile = await self._upgrade_profile_or_raise(transaction)
        except LockNotAcquiredError as e:
            raise ConcurrentUpdateError(
                "Another purchase for this user is in progress"
            ) from e

        logger.info(
            "transaction_reapplied",
            transaction_id=str(transaction_id),
            user_id=str(transaction.user_id),
        )
        return profile
