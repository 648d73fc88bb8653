"""
Negotiation Store
=================

Owns the durable state of negotiations and is the only component the gateway
talks to. Each public function is one unit of work on one negotiation id:

1. load the row ``SELECT ... FOR UPDATE`` so writers on the same id are
   serialized (different ids never contend),
2. check the edit lease via ``lockManager``,
3. validate the event via ``negotiationStateMachine``,
4. write the new state and append to ``offerHistory`` in the caller's
   transaction, then emit a lifecycle event.

Failures raise the typed errors from ``negotiationErrors`` before anything
is written, so a failed call leaves neither state nor history changed.
Callers own the transaction (``get_db`` commits or rolls back).
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.events import negotiationEvents
from src.models import (
    Negotiation,
    NegotiationStatus,
    OfferAction,
    TERMINAL_STATUSES,
)
from src.services import lockManager, offerHistory
from src.services.negotiationErrors import (
    DuplicateNegotiationError,
    NegotiationNotFoundError,
    NegotiationValidationError,
)
from src.services.negotiationStateMachine import (
    NegotiationPatch,
    OrderConfirmed,
    Transition,
    apply_event,
    derive_event,
    validate_offer,
)

logger = logging.getLogger(__name__)

DUPLICATE_POLICY_CONFLICT = "conflict"
DUPLICATE_POLICY_ALLOW = "allow"

_OPEN_STATUSES = (NegotiationStatus.PENDING, NegotiationStatus.COUNTER_OFFER)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _resolve_now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _party_filter(actor_id: uuid.UUID):
    return or_(Negotiation.buyer_id == actor_id, Negotiation.seller_id == actor_id)


def _require_party(negotiation: Negotiation, actor_id: uuid.UUID) -> None:
    # Non-parties get the same answer as for an unknown id
    if not negotiation.is_party(actor_id):
        raise NegotiationNotFoundError(negotiation.id)


def _counterparty(negotiation: Negotiation, actor_id: uuid.UUID) -> uuid.UUID:
    return negotiation.seller_id if actor_id == negotiation.buyer_id else negotiation.buyer_id


def create_lock_key(product_id: uuid.UUID, buyer_id: uuid.UUID) -> int:
    """Signed 64-bit advisory lock key for one (product, buyer) pair."""
    digest = hashlib.blake2b(product_id.bytes + buyer_id.bytes, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def _serialize_creates(
    db: AsyncSession,
    product_id: uuid.UUID,
    buyer_id: uuid.UUID,
) -> None:
    """Make concurrent creates for the same buyer and product take turns.

    There is no row to lock before the negotiation exists, so Postgres gets a
    transaction-scoped advisory lock instead; it is released on commit or
    rollback. A second create waits here and then sees the first one's row
    in the duplicate check.
    """
    bind = db.bind
    if bind is None or bind.dialect.name != "postgresql":
        return
    key = create_lock_key(product_id, buyer_id)
    await db.execute(select(func.pg_advisory_xact_lock(literal(key, BigInteger))))


async def _load_for_update(db: AsyncSession, negotiation_id: uuid.UUID) -> Negotiation:
    """Fetch the row under a write lock, refreshing any stale identity-map copy."""
    stmt = (
        select(Negotiation)
        .where(Negotiation.id == negotiation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    negotiation = result.scalar_one_or_none()
    if negotiation is None:
        raise NegotiationNotFoundError(negotiation_id)
    return negotiation


def _apply_transition(
    negotiation: Negotiation,
    transition: Transition,
    actor_id: uuid.UUID,
    now: datetime,
) -> None:
    negotiation.status = transition.status
    negotiation.proposed_price = transition.price
    negotiation.proposed_quantity = transition.quantity
    negotiation.last_offer_by = transition.last_offer_by
    negotiation.updated_at = now

    offerHistory.append_entry(
        negotiation,
        action=transition.action,
        offer_by=actor_id,
        price=transition.price,
        quantity=transition.quantity,
        message=transition.message,
        now=now,
    )

    if transition.status in TERMINAL_STATUSES:
        # Nothing left to edit on a closed negotiation
        lockManager.force_release(negotiation, actor_id, now)
    else:
        # The turn passed to the other party, so the actor's lease is done
        lockManager.release_if_owned(negotiation, actor_id)
        lockManager.reclaim_if_expired(negotiation, now)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_negotiation(
    db: AsyncSession,
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> Negotiation:
    """Fetch a negotiation visible to ``actor_id``.

    Lock fields are not rewritten here; the gateway derives ``is_locked`` and
    ``lock_expires_in`` from the stored timestamps at read time.

    Raises:
        NegotiationNotFoundError: Unknown id, or the actor is not a party.
    """
    result = await db.execute(select(Negotiation).where(Negotiation.id == negotiation_id))
    negotiation = result.scalar_one_or_none()
    if negotiation is None:
        raise NegotiationNotFoundError(negotiation_id)
    _require_party(negotiation, actor_id)
    return negotiation


async def get_active_for_product(
    db: AsyncSession,
    product_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> Optional[Negotiation]:
    """Return the most recently updated open negotiation on a product where
    the actor is buyer or seller, or ``None``."""
    stmt = (
        select(Negotiation)
        .where(
            Negotiation.product_id == product_id,
            Negotiation.status.in_(_OPEN_STATUSES),
            _party_filter(actor_id),
        )
        .order_by(Negotiation.updated_at.desc(), Negotiation.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def list_negotiations(
    db: AsyncSession,
    actor_id: uuid.UUID,
    status: Optional[NegotiationStatus] = None,
) -> list[Negotiation]:
    """List every negotiation the actor takes part in, most recently updated first."""
    stmt = select(Negotiation).where(_party_filter(actor_id))
    if status is not None:
        stmt = stmt.where(Negotiation.status == status)
    stmt = stmt.order_by(
        Negotiation.updated_at.desc(),
        Negotiation.created_at.desc(),
        Negotiation.id,
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def create_negotiation(
    db: AsyncSession,
    *,
    product_id: uuid.UUID,
    buyer_id: uuid.UUID,
    seller_id: uuid.UUID,
    price: Decimal,
    quantity: int,
    message: Optional[str] = None,
    duplicate_policy: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Buyer opens a negotiation with an initial offer.

    The negotiation starts ``PENDING`` with ``last_offer_by = buyer_id`` and a
    history seeded with the opening offer.

    Raises:
        NegotiationValidationError: Invalid price/quantity, or the buyer is
            the seller of the listing.
        DuplicateNegotiationError: The buyer already has an open negotiation
            on this product and the duplicate policy is ``conflict``.
    """
    now = _resolve_now(now)
    policy = duplicate_policy or settings.duplicate_negotiation_policy

    if buyer_id == seller_id:
        raise NegotiationValidationError("You cannot negotiate on your own listing.")
    validate_offer(price, quantity)

    if policy == DUPLICATE_POLICY_CONFLICT:
        await _serialize_creates(db, product_id, buyer_id)
        existing = await db.execute(
            select(Negotiation.id)
            .where(
                Negotiation.product_id == product_id,
                Negotiation.buyer_id == buyer_id,
                Negotiation.status.in_(_OPEN_STATUSES),
            )
            .limit(1)
        )
        existing_id = existing.scalar_one_or_none()
        if existing_id is not None:
            raise DuplicateNegotiationError(existing_id)

    negotiation = Negotiation(
        id=uuid.uuid4(),
        product_id=product_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        status=NegotiationStatus.PENDING,
        proposed_price=price,
        proposed_quantity=quantity,
        last_offer_by=buyer_id,
        lock_ttl_seconds=settings.lock_ttl_seconds,
        created_at=now,
        updated_at=now,
        history=[],
    )
    offerHistory.append_entry(
        negotiation,
        action=OfferAction.OFFERED,
        offer_by=buyer_id,
        price=price,
        quantity=quantity,
        message=message,
        now=now,
    )
    db.add(negotiation)
    await db.flush()

    negotiationEvents.emit_negotiation_created(
        negotiation.id, product_id, buyer_id, seller_id, price, quantity
    )
    logger.info(
        "Negotiation created: id=%s, product=%s, buyer=%s, price=%s, qty=%d",
        negotiation.id,
        product_id,
        buyer_id,
        price,
        quantity,
    )
    return negotiation


async def update_negotiation(
    db: AsyncSession,
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
    patch: NegotiationPatch,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Apply an accept / reject / counter from one of the parties.

    Raises:
        NegotiationNotFoundError: Unknown id or actor is not a party.
        NegotiationValidationError: The patch maps to no event or carries
            invalid terms.
        LockHeldByOtherError: The other party holds a live lease.
        NegotiationClosedError: The negotiation is terminal.
        TurnViolationError: The actor made the standing offer.
    """
    now = _resolve_now(now)
    negotiation = await _load_for_update(db, negotiation_id)
    _require_party(negotiation, actor_id)

    event = derive_event(patch)
    lockManager.ensure_writable(negotiation, actor_id, now)
    transition = apply_event(negotiation, actor_id, event)

    _apply_transition(negotiation, transition, actor_id, now)
    await db.flush()

    recipient = _counterparty(negotiation, actor_id)
    if transition.action == OfferAction.COUNTERED:
        negotiationEvents.emit_offer_countered(
            negotiation.id, actor_id, recipient, transition.price, transition.quantity
        )
    else:
        negotiationEvents.emit_negotiation_closed(
            negotiation.id,
            transition.status.value,
            actor_id,
            recipient,
            transition.price,
            transition.quantity,
        )

    logger.info(
        "Negotiation updated: id=%s, actor=%s, action=%s, status=%s, price=%s, qty=%d",
        negotiation.id,
        actor_id,
        transition.action.value,
        transition.status.value,
        transition.price,
        transition.quantity,
    )
    return negotiation


async def mark_ordered(
    db: AsyncSession,
    negotiation_id: uuid.UUID,
    order_reference: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Order service confirms a purchase at the negotiated terms.

    Moves ``ACCEPTED`` to ``ORDERED``; the agreed price and quantity are
    left untouched.
    """
    now = _resolve_now(now)
    negotiation = await _load_for_update(db, negotiation_id)

    transition = apply_event(negotiation, None, OrderConfirmed(order_reference=order_reference))
    _apply_transition(negotiation, transition, negotiation.buyer_id, now)
    negotiation.order_reference = order_reference
    await db.flush()

    negotiationEvents.emit_negotiation_ordered(
        negotiation.id, negotiation.buyer_id, negotiation.seller_id, order_reference
    )
    logger.info(
        "Negotiation ordered: id=%s, order_reference=%s",
        negotiation.id,
        order_reference,
    )
    return negotiation


# ---------------------------------------------------------------------------
# Lease operations
# ---------------------------------------------------------------------------

async def acquire_lock(
    db: AsyncSession,
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Take the edit lease (or refresh one the actor already holds).

    Raises:
        LockHeldByOtherError: Another party holds a live lease.
        NegotiationClosedError: The negotiation is terminal.
    """
    now = _resolve_now(now)
    negotiation = await _load_for_update(db, negotiation_id)
    _require_party(negotiation, actor_id)

    status = lockManager.acquire(negotiation, actor_id, now)
    await db.flush()

    logger.info(
        "Lock acquired: negotiation=%s, owner=%s, expires_in=%ds",
        negotiation.id,
        actor_id,
        status.expires_in,
    )
    return negotiation


async def extend_lock(
    db: AsyncSession,
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Restart the actor's live lease at the full TTL.

    Raises:
        NotLockOwnerError: The actor does not hold a live lease.
    """
    now = _resolve_now(now)
    negotiation = await _load_for_update(db, negotiation_id)
    _require_party(negotiation, actor_id)

    status = lockManager.extend(negotiation, actor_id, now)
    negotiation.updated_at = now
    await db.flush()

    logger.info(
        "Lock extended: negotiation=%s, owner=%s, expires_in=%ds",
        negotiation.id,
        actor_id,
        status.expires_in,
    )
    return negotiation


async def force_release_lock(
    db: AsyncSession,
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
    policy: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Clear the lease on behalf of either party. Safe to repeat.

    Raises:
        NotLockOwnerError: Policy ``owner_only`` and another party holds a
            live lease.
    """
    now = _resolve_now(now)
    negotiation = await _load_for_update(db, negotiation_id)
    _require_party(negotiation, actor_id)

    previous_owner = lockManager.force_release(
        negotiation,
        actor_id,
        now,
        policy=policy or settings.force_release_policy,
    )
    await db.flush()

    if previous_owner is not None and previous_owner != actor_id:
        negotiationEvents.emit_lock_force_released(negotiation.id, actor_id, previous_owner)
    logger.info(
        "Lock released: negotiation=%s, by=%s, previous_owner=%s",
        negotiation.id,
        actor_id,
        previous_owner,
    )
    return negotiation
