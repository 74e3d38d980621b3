"""Entitlement gate: read-only premium access decisions.

Used in-process by content-serving code. Never writes; correcting stale
profiles is the expiry sweeper's job.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.utils.dates import utc_now

from .exceptions import ProfileNotFoundError
from .models import Profile


if TYPE_CHECKING:
    from .store import EntitlementStore


@dataclass(frozen=True)
class AccessDecision:
    """Gate decision plus the profile it was based on."""

    has_premium_access: bool
    profile: Profile | None


class EntitlementGate:
    """Answers "may this user see premium content?"."""

    def __init__(
        self,
        store: "EntitlementStore",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock

    async def describe_access(
        self,
        user_id: UUID | None,
        now: datetime | None = None,
    ) -> AccessDecision:
        """Decide access and return the profile snapshot used."""
        if user_id is None:
            return AccessDecision(has_premium_access=False, profile=None)

        try:
            profile = await self.store.get_profile(user_id)
        except ProfileNotFoundError:
            return AccessDecision(has_premium_access=False, profile=None)

        at = now or self.clock()
        return AccessDecision(
            has_premium_access=profile.is_entitled(at),
            profile=profile,
        )

    async def has_premium_access(
        self,
        user_id: UUID | None,
        now: datetime | None = None,
    ) -> bool:
        """True iff the user is premium and the expiry is unset or in the future.

        A profile expiring exactly at `now` is not entitled.
        """
        decision = await self.describe_access(user_id, now)
        return decision.has_premium_access
