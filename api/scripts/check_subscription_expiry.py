"""Downgrade expired premium memberships (one sweep pass).

Meant for cron; equivalent to `POST /subscriptions/check-expiry` without
going through HTTP.

Exit codes:
    0  sweep completed (or another sweep already holds the lock)
    1  candidate scan failed or some profiles could not be downgraded

Usage:
    cd api && python -m scripts.check_subscription_expiry
"""

import asyncio
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import redis.asyncio as redis  # noqa: E402
import structlog  # noqa: E402

from src.config.settings import get_settings  # noqa: E402
from src.core.context import RequestContext  # noqa: E402
from src.core.database import (  # noqa: E402
    init_async_cassandra,
    shutdown_async_cassandra,
)
from src.core.logging import configure_structlog  # noqa: E402
from src.core.redis import (  # noqa: E402
    SWEEP_LOCK_NAME,
    LockNotAcquiredError,
    init_redis,
    redis_lock,
    shutdown_redis,
)
from src.membership.exceptions import SweepError  # noqa: E402
from src.membership.store import EntitlementStore  # noqa: E402
from src.membership.sweeper import ExpirySweeper  # noqa: E402
from src.utils.dates import utc_now  # noqa: E402


logger = structlog.get_logger(__name__)


async def run_sweep() -> int:
    """Run one sweep and return the process exit code."""
    settings = get_settings()

    redis_client = None
    try:
        redis_client = await init_redis()
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning("redis_init_skipped", error=str(e))

    try:
        session = await init_async_cassandra()
        sweeper = ExpirySweeper(
            store=EntitlementStore(
                session=session, keyspace=settings.cassandra_keyspace
            ),
            page_size=settings.membership_sweep_page_size,
        )

        async with redis_lock(
            redis_client,
            SWEEP_LOCK_NAME,
            settings.membership_sweep_lock_timeout,
            blocking_timeout=0,
        ):
            result = await sweeper.sweep(utc_now())
    except LockNotAcquiredError:
        logger.info("expiry_sweep_already_running")
        return 0
    except SweepError:
        return 1
    finally:
        await shutdown_redis()
        await shutdown_async_cassandra()

    return 0 if result.success else 1


def main() -> None:
    settings = get_settings()
    configure_structlog(settings)

    with RequestContext(request_id=f"expiry-sweep-{utc_now():%Y%m%dT%H%M%S}"):
        sys.exit(asyncio.run(run_sweep()))


if __name__ == "__main__":
    main()
