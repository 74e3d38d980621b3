"""Shared fixtures: app client, in-memory entitlement store, tokens."""

import os
import tempfile
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import pytest


# Must be set before src.config.get_settings() is first called
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("MASTER_API_KEY", "test-master-key")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "tp-test-logs"))

from fastapi.testclient import TestClient  # noqa: E402

from src.auth.permissions import UserRole  # noqa: E402
from src.auth.security import create_access_token  # noqa: E402
from src.membership.exceptions import (  # noqa: E402
    ConcurrentUpdateError,
    ProfileNotFoundError,
    StoreError,
    TransactionNotFoundError,
    TransactionStateError,
)
from src.membership.models import (  # noqa: E402
    MembershipType,
    Profile,
    Transaction,
    TransactionStatus,
    create_default_profile,
)
from src.membership.payments import PaymentOutcome  # noqa: E402


MASTER_API_KEY = "test-master-key"
FIXED_NOW = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)


class FakeEntitlementStore:
    """In-memory EntitlementStore with the same contract.

    `fail_steps` makes the named step raise StoreError, like a driver failure.
    `writes` records every successful write.
    """

    def __init__(self) -> None:
        self.profiles: dict[UUID, Profile] = {}
        self.transactions: dict[UUID, Transaction] = {}
        self.fail_steps: set[str] = set()
        self.writes: list[str] = []

    def _check(self, step: str, transaction_id: UUID | None = None) -> None:
        if step in self.fail_steps:
            raise StoreError(f"Store failure during {step}", step, transaction_id)

    def add_profile(self, user_id: UUID | None = None, **fields: Any) -> Profile:
        profile = Profile(user_id=user_id or uuid4(), **fields)
        self.profiles[profile.user_id] = profile
        return profile

    async def get_profile(self, user_id: UUID) -> Profile:
        self._check("get_profile")
        profile = self.profiles.get(user_id)
        if profile is None:
            raise ProfileNotFoundError
        return replace(profile)

    async def ensure_profile(self, user_id: UUID) -> Profile:
        if user_id in self.profiles:
            return await self.get_profile(user_id)
        self._check("create_profile")
        profile = create_default_profile(user_id)
        self.profiles[user_id] = profile
        self.writes.append("create_profile")
        return replace(profile)

    async def update_profile(
        self,
        user_id: UUID,
        fields: dict[str, Any],
        expected_version: int,
    ) -> int:
        self._check("update_profile")
        current = self.profiles.get(user_id)
        if current is None or current.version != expected_version:
            raise ConcurrentUpdateError
        updated = replace(current, **fields, version=expected_version + 1)
        self.profiles[user_id] = updated
        self.writes.append("update_profile")
        return updated.version

    async def find_expired_premium_profiles(
        self,
        now: datetime,
        page_size: int = 500,
        after_token: int | None = None,
    ) -> AsyncIterator[Profile]:
        self._check("fetch_expired")
        candidates = [
            replace(p)
            for p in sorted(self.profiles.values(), key=lambda p: str(p.user_id))
            if p.is_premium
            and p.membership_expires_at is not None
            and p.membership_expires_at < now
        ]
        for profile in candidates:
            yield profile

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        self._check("create_transaction", transaction.transaction_id)
        self.transactions[transaction.transaction_id] = transaction
        self.writes.append("create_transaction")
        return transaction

    async def update_transaction_status(
        self,
        transaction: Transaction,
        status: TransactionStatus,
        *,
        confirmed_at: datetime | None = None,
        membership_expires_at: datetime | None = None,
        failure_reason: str | None = None,
    ) -> Transaction:
        tid = transaction.transaction_id
        self._check("update_transaction", tid)
        current = self.transactions[tid]
        if current.status != TransactionStatus.PENDING:
            raise TransactionStateError(tid)
        updated = replace(
            current,
            status=status,
            confirmed_at=confirmed_at,
            membership_expires_at=membership_expires_at,
            failure_reason=failure_reason,
        )
        self.transactions[tid] = updated
        self.writes.append("update_transaction")
        return updated

    async def get_transaction(self, transaction_id: UUID) -> Transaction:
        self._check("get_transaction", transaction_id)
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError
        return transaction

    async def list_user_transactions(
        self,
        user_id: UUID,
        limit: int = 50,
    ) -> list[Transaction]:
        self._check("list_transactions")
        own = [t for t in self.transactions.values() if t.user_id == user_id]
        own.sort(key=lambda t: t.created_at, reverse=True)
        return own[:limit]


class DecliningPaymentConfirmer:
    """Declines every payment."""

    def __init__(self, reason: str = "Card declined") -> None:
        self.reason = reason

    async def confirm(self, transaction: Transaction) -> PaymentOutcome:  # noqa: ARG002
        return PaymentOutcome.declined(self.reason)


@pytest.fixture
def fake_store() -> FakeEntitlementStore:
    """Empty in-memory entitlement store."""
    return FakeEntitlementStore()


@pytest.fixture
def declining_confirmer() -> DecliningPaymentConfirmer:
    return DecliningPaymentConfirmer()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock frozen at 2024-01-15 10:00 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def premium_profile_factory(
    fake_store: FakeEntitlementStore,
) -> Callable[..., Profile]:
    """Add a premium profile expiring at the given instant (None = open-ended)."""

    def factory(expires_at: datetime | None, user_id: UUID | None = None) -> Profile:
        return fake_store.add_profile(
            user_id,
            membership_type=MembershipType.PREMIUM,
            membership_expires_at=expires_at,
            subscription_start=FIXED_NOW,
        )

    return factory


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Mint an access token the way the auth service does."""

    def factory(user_id: UUID, role: UserRole = UserRole.USER) -> str:
        return create_access_token(
            {"sub": str(user_id), "email": f"{user_id}@example.com", "role": role.value}
        )

    return factory


@pytest.fixture
def auth_headers(
    make_token: Callable[..., str],
) -> Callable[..., dict[str, str]]:
    def factory(user_id: UUID, role: UserRole = UserRole.USER) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return factory


@pytest.fixture
def client(fake_store: FakeEntitlementStore) -> Iterator[TestClient]:
    """Test client backed by the in-memory store.

    The lifespan is not run, so no Cassandra or Redis connection is made.
    """
    from src.main import app

    app.state.entitlement_store = fake_store
    app.state.payment_confirmer = None
    yield TestClient(app)
    app.state.entitlement_store = None
    app.state.payment_confirmer = None
    app.dependency_overrides.clear()
