# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Entitlement store: Cassandra persistence for profiles and transactions.

No business rules live here. The store guarantees:
- single-row atomicity for every write
- compare-and-swap on `profiles.version` for profile writes
- `pending` -> final status happens at most once per transaction
  (lightweight transaction `IF status = 'pending'`)
"""

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from cassandra import DriverException, OperationTimedOut
from cassandra.cluster import NoHostAvailable

from src.core.logging import get_logger
from src.utils.dates import utc_now

from .exceptions import (
    ConcurrentUpdateError,
    ProfileNotFoundError,
    StoreError,
    TransactionNotFoundError,
    TransactionStateError,
)
from .models import (
    MembershipType,
    Profile,
    Transaction,
    TransactionStatus,
    create_default_profile,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)

STORE_EXCEPTIONS = (DriverException, NoHostAvailable, OperationTimedOut, OSError)

# Murmur3Partitioner never assigns the minimum token to a key
MIN_TOKEN = -(2**63)

# Columns a caller may change through update_profile
PROFILE_MUTABLE_COLUMNS = frozenset(
    {
        "membership_type",
        "membership_expires_at",
        "subscription_start",
        "last_transaction_id",
        "updated_at",
    }
)


@contextmanager
def _store_step(step: str, transaction_id: UUID | None = None) -> Iterator[None]:
    """Translate driver failures into StoreError tagged with `step`."""
    try:
        yield
    except STORE_EXCEPTIONS as e:
        logger.error(
            "membership_store_error",
            step=step,
            transaction_id=str(transaction_id) if transaction_id else None,
            error=str(e),
        )
        raise StoreError(
            f"Store failure during {step}", step, transaction_id
        ) from e


def _was_applied(result: Any) -> bool:
    """Read the `[applied]` column of a lightweight transaction result."""
    row = result[0] if result else None
    return bool(row[0]) if row is not None else False


def _to_cql_value(value: Any) -> Any:
    if isinstance(value, MembershipType | TransactionStatus):
        return value.value
    return value


class EntitlementStore:
    """Durable storage for Profile and Transaction records."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._update_profile_statements: dict[tuple[str, ...], Any] = {}
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Profiles
        self._get_profile = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.profiles
            WHERE user_id = ?
        """)

        self._insert_profile_if_absent = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.profiles
            (user_id, membership_type, membership_expires_at, subscription_start,
             last_transaction_id, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        # token(user_id) is returned so a scan can resume after the last row
        self._scan_expired_premium = self.session.prepare(f"""
            SELECT user_id, token(user_id) AS row_token, membership_type,
                   membership_expires_at, subscription_start, last_transaction_id,
                   version, created_at, updated_at
            FROM {self.keyspace}.profiles
            WHERE token(user_id) > ?
              AND membership_type = ?
              AND membership_expires_at < ?
            LIMIT ?
            ALLOW FILTERING
        """)

        # Transactions
        self._insert_transaction = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.transactions
            (transaction_id, user_id, amount, membership_type, status,
             failure_reason, confirmed_at, membership_expires_at,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._insert_transaction_by_user = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.transactions_by_user
            (user_id, created_at, transaction_id, amount, membership_type, status)
            VALUES (?, ?, ?, ?, ?, ?)
        """)

        self._finalize_transaction = self.session.prepare(f"""
            UPDATE {self.keyspace}.transactions
            SET status = ?, failure_reason = ?, confirmed_at = ?,
                membership_expires_at = ?, updated_at = ?
            WHERE transaction_id = ?
            IF status = ?
        """)

        self._update_status_by_user = self.session.prepare(f"""
            UPDATE {self.keyspace}.transactions_by_user
            SET status = ?
            WHERE user_id = ? AND created_at = ? AND transaction_id = ?
        """)

        self._get_transaction = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.transactions
            WHERE transaction_id = ?
        """)

        self._get_user_transactions = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.transactions_by_user
            WHERE user_id = ?
            LIMIT ?
        """)

    def _update_profile_statement(self, columns: tuple[str, ...]) -> Any:
        """Prepared CAS update for a given set of columns (cached)."""
        statement = self._update_profile_statements.get(columns)
        if statement is None:
            assignments = ", ".join(f"{column} = ?" for column in columns)
            statement = self.session.prepare(f"""
                UPDATE {self.keyspace}.profiles
                SET {assignments}, version = ?
                WHERE user_id = ?
                IF version = ?
            """)
            self._update_profile_statements[columns] = statement
        return statement

    # ==========================================================================
    # Profiles
    # ==========================================================================

    async def get_profile(self, user_id: UUID) -> Profile:
        """Load a profile.

        Raises:
            ProfileNotFoundError: If the user has no profile
            StoreError: On persistence failure
        """
        with _store_step("get_profile"):
            result = await self.session.aexecute(self._get_profile, [user_id])

        row = result[0] if result else None
        if row is None:
            raise ProfileNotFoundError
        return Profile.from_row(row)

    async def ensure_profile(self, user_id: UUID) -> Profile:
        """Return the user's profile, creating a free one if absent."""
        profile = create_default_profile(user_id)

        with _store_step("create_profile"):
            result = await self.session.aexecute(
                self._insert_profile_if_absent,
                [
                    profile.user_id,
                    profile.membership_type.value,
                    None,
                    None,
                    None,
                    profile.version,
                    profile.created_at,
                    profile.updated_at,
                ],
            )

        if _was_applied(result):
            logger.info("profile_created", user_id=str(user_id))
            return profile

        return await self.get_profile(user_id)

    async def update_profile(
        self,
        user_id: UUID,
        fields: dict[str, Any],
        expected_version: int,
    ) -> int:
        """Partially update a profile if its version still matches.

        Args:
            user_id: Profile owner
            fields: Column -> new value (subset of PROFILE_MUTABLE_COLUMNS)
            expected_version: Version the caller read

        Returns:
            The new version

        Raises:
            ConcurrentUpdateError: Version changed since the caller's read
            StoreError: On persistence failure
        """
        unknown = set(fields) - PROFILE_MUTABLE_COLUMNS
        if unknown:
            msg = f"Unknown profile fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        values = dict(fields)
        values.setdefault("updated_at", utc_now())
        columns = tuple(sorted(values))
        new_version = expected_version + 1

        statement = self._update_profile_statement(columns)
        params = [_to_cql_value(values[column]) for column in columns]
        params.extend([new_version, user_id, expected_version])

        with _store_step("update_profile"):
            result = await self.session.aexecute(statement, params)

        if not _was_applied(result):
            raise ConcurrentUpdateError

        return new_version

    async def find_expired_premium_profiles(
        self,
        now: datetime,
        page_size: int = 500,
        after_token: int | None = None,
    ) -> AsyncIterator[Profile]:
        """Yield premium profiles whose expiry is strictly before `now`.

        Pages through the token ring in ascending order, `page_size` rows per
        query. Each yielded profile carries `row_token`; passing the last one
        back as `after_token` resumes the scan after it.
        """
        token = MIN_TOKEN if after_token is None else after_token

        while True:
            with _store_step("fetch_expired"):
                rows = await self.session.aexecute(
                    self._scan_expired_premium,
                    [token, MembershipType.PREMIUM.value, now, page_size],
                )

            page = [Profile.from_row(row) for row in rows]
            for profile in page:
                yield profile

            if len(page) < page_size:
                return
            token = page[-1].row_token

    # ==========================================================================
    # Transactions
    # ==========================================================================

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        """Persist a new transaction (dual-write: main + by_user)."""
        with _store_step("create_transaction", transaction.transaction_id):
            await self.session.aexecute(
                self._insert_transaction,
                [
                    transaction.transaction_id,
                    transaction.user_id,
                    transaction.amount,
                    transaction.membership_type.value,
                    transaction.status.value,
                    transaction.failure_reason,
                    transaction.confirmed_at,
                    transaction.membership_expires_at,
                    transaction.created_at,
                    transaction.updated_at,
                ],
            )

        tid = transaction.transaction_id
        try:
            await self.session.aexecute(
                self._insert_transaction_by_user,
                [
                    transaction.user_id,
                    transaction.created_at,
                    tid,
                    transaction.amount,
                    transaction.membership_type.value,
                    transaction.status.value,
                ],
            )
        except STORE_EXCEPTIONS as e:
            logger.error(
                "membership_store_error",
                step="create_transaction",
                transaction_id=str(tid),
                error=str(e),
            )
            await self._abandon_transaction(tid, "Transaction history write failed")
            raise StoreError(
                "Store failure during create_transaction", "create_transaction", tid
            ) from e

        return transaction

    async def _abandon_transaction(self, transaction_id: UUID, reason: str) -> None:
        """Mark a half-written pending transaction failed so it is never charged."""
        try:
            await self.session.aexecute(
                self._finalize_transaction,
                [
                    TransactionStatus.FAILED.value,
                    reason,
                    None,
                    None,
                    utc_now(),
                    transaction_id,
                    TransactionStatus.PENDING.value,
                ],
            )
        except STORE_EXCEPTIONS as e:
            logger.error(
                "transaction_left_pending",
                transaction_id=str(transaction_id),
                error=str(e),
            )

    async def update_transaction_status(
        self,
        transaction: Transaction,
        status: TransactionStatus,
        *,
        confirmed_at: datetime | None = None,
        membership_expires_at: datetime | None = None,
        failure_reason: str | None = None,
    ) -> Transaction:
        """Move a pending transaction to its final status.

        Raises:
            TransactionStateError: Transaction is no longer pending
            StoreError: On persistence failure
        """
        now = utc_now()
        tid = transaction.transaction_id

        with _store_step("update_transaction", tid):
            result = await self.session.aexecute(
                self._finalize_transaction,
                [
                    status.value,
                    failure_reason,
                    confirmed_at,
                    membership_expires_at,
                    now,
                    tid,
                    TransactionStatus.PENDING.value,
                ],
            )

        if not _was_applied(result):
            raise TransactionStateError(tid)

        # The main row is authoritative and already final; a stale history
        # row must not turn an applied status change into a failure.
        try:
            await self.session.aexecute(
                self._update_status_by_user,
                [status.value, transaction.user_id, transaction.created_at, tid],
            )
        except STORE_EXCEPTIONS as e:
            logger.warning(
                "transaction_history_status_stale",
                transaction_id=str(tid),
                status=status.value,
                error=str(e),
            )

        return Transaction(
            transaction_id=tid,
            user_id=transaction.user_id,
            amount=transaction.amount,
            membership_type=transaction.membership_type,
            status=status,
            failure_reason=failure_reason,
            confirmed_at=confirmed_at,
            membership_expires_at=membership_expires_at,
            created_at=transaction.created_at,
            updated_at=now,
        )

    async def get_transaction(self, transaction_id: UUID) -> Transaction:
        """Load a transaction by id.

        Raises:
            TransactionNotFoundError: Unknown id
        """
        with _store_step("get_transaction", transaction_id):
            result = await self.session.aexecute(
                self._get_transaction, [transaction_id]
            )

        row = result[0] if result else None
        if row is None:
            raise TransactionNotFoundError
        return Transaction.from_row(row)

    async def list_user_transactions(
        self,
        user_id: UUID,
        limit: int = 50,
    ) -> list[Transaction]:
        """Newest-first purchase history (summary columns only)."""
        with _store_step("list_transactions"):
            rows = await self.session.aexecute(
                self._get_user_transactions, [user_id, limit]
            )
        return [Transaction.from_row(row) for row in rows]
