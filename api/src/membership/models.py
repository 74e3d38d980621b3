"""Membership models and Cassandra schema.

A profile caches the user's current entitlement (tier + expiry). Transactions
are the purchase history; the latest successful one is what the profile
reflects.

Tables:
- profiles: one row per user, optimistic concurrency via `version`
- transactions: one row per purchase attempt
- transactions_by_user: lookup for purchase history (newest first)
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from src.utils.dates import ensure_utc_aware, utc_now


if TYPE_CHECKING:
    from cassandra.cluster import Row


class MembershipType(str, Enum):
    """Membership tier."""

    FREE = "free"
    PREMIUM = "premium"


class TransactionStatus(str, Enum):
    """Payment outcome of a transaction.

    PENDING may move to SUCCESS or FAILED exactly once.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

PROFILES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.profiles (
    user_id UUID PRIMARY KEY,
    membership_type TEXT,
    membership_expires_at TIMESTAMP,
    subscription_start TIMESTAMP,
    last_transaction_id UUID,
    version INT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# Used by the expiry sweep to narrow the scan to premium profiles
PROFILES_MEMBERSHIP_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS profiles_membership_type_idx
ON {keyspace}.profiles (membership_type)
"""

TRANSACTIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.transactions (
    transaction_id UUID PRIMARY KEY,
    user_id UUID,
    amount DECIMAL,
    membership_type TEXT,
    status TEXT,
    failure_reason TEXT,
    confirmed_at TIMESTAMP,
    membership_expires_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

TRANSACTIONS_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.transactions_by_user (
    user_id UUID,
    created_at TIMESTAMP,
    transaction_id UUID,
    amount DECIMAL,
    membership_type TEXT,
    status TEXT,
    PRIMARY KEY ((user_id), created_at, transaction_id)
) WITH CLUSTERING ORDER BY (created_at DESC, transaction_id ASC)
"""


# List of all CQL statements (format with keyspace before executing)
MEMBERSHIP_TABLES_CQL = [
    PROFILES_TABLE_CQL,
    PROFILES_MEMBERSHIP_INDEX_CQL,
    TRANSACTIONS_TABLE_CQL,
    TRANSACTIONS_BY_USER_TABLE_CQL,
]


def get_membership_tables_cql(keyspace: str) -> list[str]:
    """Get all CQL statements for membership tables."""
    return [cql.format(keyspace=keyspace) for cql in MEMBERSHIP_TABLES_CQL]


# ==============================================================================
# Entities
# ==============================================================================


@dataclass
class Profile:
    """A user's membership state."""

    user_id: UUID
    membership_type: MembershipType = MembershipType.FREE
    membership_expires_at: datetime | None = None
    subscription_start: datetime | None = None
    last_transaction_id: UUID | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    # Murmur3 token of user_id; only set on rows read by the expiry scan
    row_token: int | None = None

    @classmethod
    def from_row(cls, row: "Row") -> "Profile":
        """Create instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            membership_type=MembershipType(row.membership_type or "free"),
            membership_expires_at=ensure_utc_aware(row.membership_expires_at),
            subscription_start=ensure_utc_aware(
                getattr(row, "subscription_start", None)
            ),
            last_transaction_id=getattr(row, "last_transaction_id", None),
            version=row.version or 0,
            created_at=ensure_utc_aware(row.created_at) or utc_now(),
            updated_at=ensure_utc_aware(row.updated_at) or utc_now(),
            row_token=getattr(row, "row_token", None),
        )

    @property
    def is_premium(self) -> bool:
        return self.membership_type == MembershipType.PREMIUM

    def is_stale(self, now: datetime) -> bool:
        """Premium on paper but the expiry is not in the future."""
        return (
            self.is_premium
            and self.membership_expires_at is not None
            and self.membership_expires_at <= now
        )

    def is_entitled(self, now: datetime) -> bool:
        """Premium and either open-ended or expiring strictly after `now`."""
        if not self.is_premium:
            return False
        return self.membership_expires_at is None or self.membership_expires_at > now

    def with_changes(self, **changes: Any) -> "Profile":
        """Copy with updated fields (used after a successful write)."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "membership_type": self.membership_type.value,
            "membership_expires_at": self.membership_expires_at.isoformat()
            if self.membership_expires_at
            else None,
            "subscription_start": self.subscription_start.isoformat()
            if self.subscription_start
            else None,
            "last_transaction_id": self.last_transaction_id,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Transaction:
    """A single purchase attempt."""

    user_id: UUID
    amount: Decimal
    membership_type: MembershipType
    status: TransactionStatus = TransactionStatus.PENDING
    transaction_id: UUID = field(default_factory=uuid4)
    failure_reason: str | None = None
    confirmed_at: datetime | None = None
    membership_expires_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: "Row") -> "Transaction":
        """Create instance from Cassandra row."""
        return cls(
            transaction_id=row.transaction_id,
            user_id=row.user_id,
            amount=row.amount,
            membership_type=MembershipType(row.membership_type),
            status=TransactionStatus(row.status),
            failure_reason=getattr(row, "failure_reason", None),
            confirmed_at=ensure_utc_aware(getattr(row, "confirmed_at", None)),
            membership_expires_at=ensure_utc_aware(
                getattr(row, "membership_expires_at", None)
            ),
            created_at=ensure_utc_aware(row.created_at) or utc_now(),
            updated_at=ensure_utc_aware(getattr(row, "updated_at", None))
            or utc_now(),
        )

    @property
    def is_final(self) -> bool:
        return self.status != TransactionStatus.PENDING

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "amount": str(self.amount),
            "membership_type": self.membership_type.value,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
            "confirmed_at": self.confirmed_at.isoformat()
            if self.confirmed_at
            else None,
            "membership_expires_at": self.membership_expires_at.isoformat()
            if self.membership_expires_at
            else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ==============================================================================
# Factory Functions
# ==============================================================================


def create_default_profile(user_id: UUID) -> Profile:
    """Profile for a user seen for the first time (free tier)."""
    return Profile(user_id=user_id, membership_type=MembershipType.FREE)


def create_pending_transaction(
    user_id: UUID,
    amount: Decimal,
    membership_type: MembershipType,
) -> Transaction:
    """Create a transaction awaiting payment confirmation."""
    return Transaction(
        user_id=user_id,
        amount=amount,
        membership_type=membership_type,
        status=TransactionStatus.PENDING,
    )
