"""Expiry sweeper.

Downgrades premium profiles whose `membership_expires_at` is strictly before
the sweep instant. Meant to be triggered by a scheduler (cron, or the
`/subscriptions/check-expiry` endpoint).

Each downgrade is a compare-and-swap on the version read during the scan, so
a profile upgraded by a concurrent purchase is skipped instead of clobbered.
Per-profile failures are counted and the sweep moves on.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.core.logging import get_logger

from .exceptions import ConcurrentUpdateError, StoreError, SweepError
from .models import MembershipType, Profile


if TYPE_CHECKING:
    from .store import EntitlementStore


logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Summary of one sweep pass."""

    swept_at: datetime
    downgraded_user_ids: list[UUID] = field(default_factory=list)
    failed_user_ids: list[UUID] = field(default_factory=list)
    skipped_user_ids: list[UUID] = field(default_factory=list)

    @property
    def expired_count(self) -> int:
        return len(self.downgraded_user_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failed_user_ids)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_user_ids)

    @property
    def success(self) -> bool:
        return not self.failed_user_ids


class ExpirySweeper:
    """Stateless batch pass over stale premium profiles."""

    def __init__(self, store: "EntitlementStore", page_size: int = 500):
        self.store = store
        self.page_size = page_size

    async def sweep(self, now: datetime) -> SweepResult:
        """Downgrade every premium profile that expired before `now`.

        Raises:
            SweepError: The candidate scan itself failed
        """
        result = SweepResult(swept_at=now)
        candidates = self.store.find_expired_premium_profiles(
            now, page_size=self.page_size
        )

        try:
            async for profile in candidates:
                await self._downgrade(profile, now, result)
        except StoreError as e:
            # _downgrade absorbs its own failures; this is the scan failing
            logger.error(
                "expiry_sweep_fetch_failed",
                error=str(e),
                expired_so_far=result.expired_count,
            )
            raise SweepError from e

        logger.info(
            "expiry_sweep_completed",
            swept_at=now.isoformat(),
            expired_count=result.expired_count,
            failed_count=result.failed_count,
            skipped_count=result.skipped_count,
        )
        return result

    async def _downgrade(
        self,
        profile: Profile,
        now: datetime,
        result: SweepResult,
    ) -> None:
        # Strictly before `now`; the scan filters the same way
        if not (
            profile.is_premium
            and profile.membership_expires_at is not None
            and profile.membership_expires_at < now
        ):
            return

        try:
            await self.store.update_profile(
                profile.user_id,
                {
                    "membership_type": MembershipType.FREE,
                    "membership_expires_at": None,
                    "subscription_start": None,
                    "updated_at": now,
                },
                expected_version=profile.version,
            )
        except ConcurrentUpdateError:
            logger.info(
                "expired_membership_changed_concurrently",
                user_id=str(profile.user_id),
            )
            result.skipped_user_ids.append(profile.user_id)
            return
        except StoreError as e:
            logger.error(
                "expired_membership_downgrade_failed",
                user_id=str(profile.user_id),
                error=str(e),
            )
            result.failed_user_ids.append(profile.user_id)
            return

        logger.info(
            "expired_membership_downgraded",
            user_id=str(profile.user_id),
            expired_at=profile.membership_expires_at.isoformat()
            if profile.membership_expires_at
            else None,
        )
        result.downgraded_user_ids.append(profile.user_id)
