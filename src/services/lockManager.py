"""
Lock Manager -- exclusive edit lease for a single negotiation
=============================================================

A negotiation carries at most one lease, stored directly on the row as
``(lock_owner, lock_acquired_at, lock_ttl_seconds)``. A lease is *live* iff
``now < lock_acquired_at + lock_ttl_seconds``; an expired lease is treated as
absent everywhere and is reclaimed lazily by the next write (or by the
background sweeper in ``src.jobs.lockSweeper``).

Lease protocol::

    acquire        free / expired       -> owner = actor, acquired_at = now
                   own live lease       -> refresh acquired_at
                   foreign live lease   -> LockHeldByOtherError(remaining)
    extend         own live lease       -> acquired_at = now
                   anything else        -> NotLockOwnerError
    force_release  always clears (policy "any_party"), or only own / dead
                   leases (policy "owner_only")

All functions are pure over the passed-in negotiation and an explicit ``now``
so they can be exercised without a clock or database. ``is_locked`` and
``lock_expires_in`` are always derived here and never stored.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.models import Negotiation
from src.services.negotiationErrors import (
    LockHeldByOtherError,
    NegotiationClosedError,
    NotLockOwnerError,
)


FORCE_RELEASE_ANY_PARTY = "any_party"
FORCE_RELEASE_OWNER_ONLY = "owner_only"


@dataclass(frozen=True)
class LockStatus:
    """Read-time view of a negotiation's lease."""
    is_locked: bool
    owner: Optional[uuid.UUID]
    expires_in: int
    expires_at: Optional[datetime]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def expires_at(negotiation: Negotiation) -> Optional[datetime]:
    if negotiation.lock_owner is None or negotiation.lock_acquired_at is None:
        return None
    return _as_utc(negotiation.lock_acquired_at) + timedelta(
        seconds=negotiation.lock_ttl_seconds
    )


def remaining_seconds(negotiation: Negotiation, now: datetime) -> int:
    """Seconds left on the lease: ``max(0, ttl - (now - acquired_at))``.

    Rounded up so that a live lease never reports zero.
    """
    deadline = expires_at(negotiation)
    if deadline is None:
        return 0
    remaining = (deadline - _as_utc(now)).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining)


def is_live(negotiation: Negotiation, now: datetime) -> bool:
    return remaining_seconds(negotiation, now) > 0


def effective_owner(negotiation: Negotiation, now: datetime) -> Optional[uuid.UUID]:
    """The lease owner, or ``None`` when unlocked or expired."""
    if is_live(negotiation, now):
        return negotiation.lock_owner
    return None


def lock_status(negotiation: Negotiation, now: datetime) -> LockStatus:
    remaining = remaining_seconds(negotiation, now)
    if remaining == 0:
        return LockStatus(is_locked=False, owner=None, expires_in=0, expires_at=None)
    return LockStatus(
        is_locked=True,
        owner=negotiation.lock_owner,
        expires_in=remaining,
        expires_at=expires_at(negotiation),
    )


def _clear(negotiation: Negotiation) -> None:
    negotiation.lock_owner = None
    negotiation.lock_acquired_at = None


def reclaim_if_expired(negotiation: Negotiation, now: datetime) -> bool:
    """Clear stale lease fields. Returns True if anything was cleared."""
    if negotiation.lock_owner is not None and not is_live(negotiation, now):
        _clear(negotiation)
        return True
    return False


def ensure_writable(negotiation: Negotiation, actor_id: uuid.UUID, now: datetime) -> None:
    """Raise ``LockHeldByOtherError`` iff another party holds a live lease.

    Holding your own lease is sufficient but not required for a write.
    """
    owner = effective_owner(negotiation, now)
    if owner is not None and owner != actor_id:
        raise LockHeldByOtherError(owner, remaining_seconds(negotiation, now))


def acquire(negotiation: Negotiation, actor_id: uuid.UUID, now: datetime) -> LockStatus:
    """Take (or refresh) the lease for ``actor_id``."""
    if negotiation.is_terminal:
        raise NegotiationClosedError(negotiation.status.value)
    ensure_writable(negotiation, actor_id, now)
    negotiation.lock_owner = actor_id
    negotiation.lock_acquired_at = now
    return lock_status(negotiation, now)


def extend(negotiation: Negotiation, actor_id: uuid.UUID, now: datetime) -> LockStatus:
    """Restart the owner's live lease at the full TTL.

    Expired leases cannot be extended, only re-acquired.
    """
    if effective_owner(negotiation, now) != actor_id:
        if is_live(negotiation, now):
            reason = "The lock is held by the other party."
        else:
            reason = "You do not hold a live lock on this negotiation; acquire it again."
        raise NotLockOwnerError(reason)
    negotiation.lock_acquired_at = now
    return lock_status(negotiation, now)


def force_release(
    negotiation: Negotiation,
    actor_id: uuid.UUID,
    now: datetime,
    policy: str = FORCE_RELEASE_ANY_PARTY,
) -> Optional[uuid.UUID]:
    """Clear the lease. Idempotent on an unlocked negotiation.

    Returns the owner whose live lease was broken, or ``None``.
    """
    owner = effective_owner(negotiation, now)
    if (
        policy == FORCE_RELEASE_OWNER_ONLY
        and owner is not None
        and owner != actor_id
    ):
        raise NotLockOwnerError(
            "Only the lock owner may release this lock; wait for it to expire."
        )
    _clear(negotiation)
    return owner


def release_if_owned(negotiation: Negotiation, actor_id: uuid.UUID) -> bool:
    """Drop the actor's own lease, e.g. once their turn is over."""
    if negotiation.lock_owner == actor_id:
        _clear(negotiation)
        return True
    return False
