"""
Expired Lock Sweeper -- Periodic Background Job.

Edit leases expire on their own: every read derives ``is_locked`` from the
stored timestamps and every write reclaims a stale lease lazily. This job is
an optional optimisation that proactively clears ``lock_owner`` /
``lock_acquired_at`` on rows whose lease has lapsed, so stale lock fields do
not linger on negotiations nobody touches.

Runs in-process when ``LOCK_SWEEPER_ENABLED=true`` (started from the FastAPI
lifespan), or as a one-shot from cron::

    python -m src.jobs.lockSweeper
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.models import Negotiation
from src.services import lockManager

logger = logging.getLogger(__name__)


async def sweep_expired_locks(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> int:
    """Clear lapsed leases. Returns the number of negotiations released.

    Rows currently locked by an in-flight writer are skipped; the writer
    will reclaim the lease itself if it has expired.
    """
    now = now or datetime.now(timezone.utc)

    stmt = (
        select(Negotiation)
        .where(Negotiation.lock_owner.is_not(None))
        .with_for_update(skip_locked=True)
    )
    result = await db.execute(stmt)

    released = 0
    for negotiation in result.scalars().all():
        if lockManager.reclaim_if_expired(negotiation, now):
            released += 1
            logger.debug("Expired lock cleared on negotiation %s", negotiation.id)

    if released:
        await db.flush()
        logger.info("Lock sweep released %d expired lock(s)", released)
    return released


async def run_lock_sweeper(
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: Optional[int] = None,
) -> None:
    """Sweep forever at a fixed interval until cancelled."""
    interval = interval_seconds or settings.lock_sweep_interval_seconds
    logger.info("Lock sweeper started (interval=%ds)", interval)
    while True:
        try:
            async with session_factory() as session:
                await sweep_expired_locks(session)
                await session.commit()
        except asyncio.CancelledError:
            logger.info("Lock sweeper stopped")
            raise
        except Exception:
            # keep sweeping; the next pass retries the same rows
            logger.exception("Lock sweep failed")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Run a single sweep with the application session factory."""
    from src.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            released = await sweep_expired_locks(session)
            await session.commit()
            print(f"Lock sweep completed: {released} released")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Lock sweep failed")
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())
