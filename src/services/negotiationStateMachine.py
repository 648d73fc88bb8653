"""
Negotiation State Machine
=========================

Finite state machine governing every negotiation status change. All
mutations MUST go through ``apply_event`` before being persisted.

State machine overview::

    PENDING ------accept------> ACCEPTED --order confirmed--> ORDERED
       |   \\------reject------> REJECTED
       |    \\-----counter----> COUNTER_OFFER --accept/reject--> (as above)
       |                          |   ^
       |                          \\---/ counter

Turn rule: while the negotiation is open, only the party that did *not* make
the standing offer (``last_offer_by``) may accept, reject or counter.
``ACCEPTED``, ``REJECTED`` and ``ORDERED`` are terminal for the parties;
only the external order service moves ``ACCEPTED`` to ``ORDERED``.

Update requests arrive as a closed ``NegotiationPatch``; ``derive_event``
decides which event the combination of fields means.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from src.models import Negotiation, NegotiationStatus, OfferAction
from src.services.negotiationErrors import (
    NegotiationClosedError,
    NegotiationNotFoundError,
    NegotiationValidationError,
    TurnViolationError,
)


# ---------------------------------------------------------------------------
# Patch and events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NegotiationPatch:
    """Fields a party may send on update. Absent fields are ``None``."""
    status: Optional[NegotiationStatus] = None
    price: Optional[Decimal] = None
    quantity: Optional[int] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Accept:
    message: Optional[str] = None


@dataclass(frozen=True)
class Reject:
    message: Optional[str] = None


@dataclass(frozen=True)
class Counter:
    price: Optional[Decimal] = None
    quantity: Optional[int] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class OrderConfirmed:
    order_reference: Optional[str] = None


NegotiationEvent = Union[Accept, Reject, Counter, OrderConfirmed]


@dataclass(frozen=True)
class Transition:
    """Resulting entity state of a legal event."""
    status: NegotiationStatus
    price: Decimal
    quantity: int
    last_offer_by: uuid.UUID
    action: OfferAction
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

_OPEN_STATUSES: frozenset[NegotiationStatus] = frozenset({
    NegotiationStatus.PENDING,
    NegotiationStatus.COUNTER_OFFER,
})

# Party events per open status -> resulting status
VALID_TRANSITIONS: dict[NegotiationStatus, dict[type, NegotiationStatus]] = {
    NegotiationStatus.PENDING: {
        Accept: NegotiationStatus.ACCEPTED,
        Reject: NegotiationStatus.REJECTED,
        Counter: NegotiationStatus.COUNTER_OFFER,
    },
    NegotiationStatus.COUNTER_OFFER: {
        Accept: NegotiationStatus.ACCEPTED,
        Reject: NegotiationStatus.REJECTED,
        Counter: NegotiationStatus.COUNTER_OFFER,
    },
    NegotiationStatus.ACCEPTED: {
        OrderConfirmed: NegotiationStatus.ORDERED,
    },
    NegotiationStatus.REJECTED: {},
    NegotiationStatus.ORDERED: {},
}

_ACTIONS: dict[type, OfferAction] = {
    Accept: OfferAction.ACCEPTED,
    Reject: OfferAction.REJECTED,
    Counter: OfferAction.COUNTERED,
    OrderConfirmed: OfferAction.ORDERED,
}

_EVENT_NAMES: dict[type, str] = {
    Accept: "accept",
    Reject: "reject",
    Counter: "counter",
}


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def validate_offer(price: Optional[Decimal], quantity: Optional[int]) -> None:
    """Raise ``NegotiationValidationError`` unless price > 0 and quantity >= 1."""
    if price is None or quantity is None:
        raise NegotiationValidationError("Both price and quantity are required.")
    if price <= 0:
        raise NegotiationValidationError("Price must be greater than zero.")
    if isinstance(quantity, bool) or int(quantity) != quantity or quantity < 1:
        raise NegotiationValidationError("Quantity must be a whole number of at least 1.")


def derive_event(patch: NegotiationPatch) -> NegotiationEvent:
    """Map an update patch to exactly one party event.

    - ``status=ACCEPTED`` / ``REJECTED`` alone (message optional) -> accept / reject
    - ``status=COUNTER_OFFER``, or price and/or quantity without a status -> counter
    - anything else is a validation error
    """
    has_terms = patch.price is not None or patch.quantity is not None

    if patch.status in (NegotiationStatus.ACCEPTED, NegotiationStatus.REJECTED):
        if has_terms:
            raise NegotiationValidationError(
                f"Cannot change price or quantity while setting status "
                f"{patch.status.value}; send a counter-offer instead."
            )
        if patch.status == NegotiationStatus.ACCEPTED:
            return Accept(message=patch.message)
        return Reject(message=patch.message)

    if patch.status == NegotiationStatus.COUNTER_OFFER or (patch.status is None and has_terms):
        if not has_terms:
            raise NegotiationValidationError(
                "A counter-offer requires a price and/or a quantity."
            )
        return Counter(price=patch.price, quantity=patch.quantity, message=patch.message)

    if patch.status is not None:
        raise NegotiationValidationError(
            f"Status {patch.status.value} cannot be requested by a negotiating party."
        )
    raise NegotiationValidationError(
        "Nothing to do: send a status, or a price and/or quantity."
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def apply_event(
    negotiation: Negotiation,
    actor_id: Optional[uuid.UUID],
    event: NegotiationEvent,
) -> Transition:
    """Validate ``event`` against the negotiation and compute the new state.

    Does not mutate the negotiation. ``actor_id`` is ``None`` only for the
    order-service event.

    Checks, in order: closed negotiation, party membership, turn, and
    (for counters) offer values.
    """
    current = NegotiationStatus(negotiation.status)
    event_type = type(event)

    if isinstance(event, OrderConfirmed):
        if current != NegotiationStatus.ACCEPTED:
            if current not in _OPEN_STATUSES:
                raise NegotiationClosedError(current.value)
            raise NegotiationValidationError(
                f"Only an ACCEPTED negotiation can be ordered (current: {current.value})."
            )
        return Transition(
            status=NegotiationStatus.ORDERED,
            price=negotiation.proposed_price,
            quantity=negotiation.proposed_quantity,
            last_offer_by=negotiation.last_offer_by,
            action=OfferAction.ORDERED,
            message=event.order_reference,
        )

    if current not in _OPEN_STATUSES:
        raise NegotiationClosedError(current.value)

    if actor_id is None or not negotiation.is_party(actor_id):
        raise NegotiationNotFoundError(negotiation.id)

    if actor_id == negotiation.last_offer_by:
        raise TurnViolationError(
            f"You made the standing offer; you cannot {_EVENT_NAMES[event_type]} "
            f"until the other party responds."
        )

    new_status = VALID_TRANSITIONS[current][event_type]

    if isinstance(event, Counter):
        price = event.price if event.price is not None else negotiation.proposed_price
        quantity = event.quantity if event.quantity is not None else negotiation.proposed_quantity
        validate_offer(price, quantity)
        return Transition(
            status=new_status,
            price=price,
            quantity=quantity,
            last_offer_by=actor_id,
            action=OfferAction.COUNTERED,
            message=event.message,
        )

    # accept / reject keep the standing terms and the standing offerer
    return Transition(
        status=new_status,
        price=negotiation.proposed_price,
        quantity=negotiation.proposed_quantity,
        last_offer_by=negotiation.last_offer_by,
        action=_ACTIONS[event_type],
        message=event.message,
    )


def is_my_turn(negotiation: Negotiation, actor_id: uuid.UUID) -> bool:
    """True when the actor is the party expected to respond."""
    return (
        NegotiationStatus(negotiation.status) in _OPEN_STATUSES
        and negotiation.is_party(actor_id)
        and negotiation.last_offer_by != actor_id
    )


def available_actions(negotiation: Negotiation, actor_id: uuid.UUID) -> list[str]:
    """Return the event names the actor may fire right now.

    Useful for UI hints (e.g. showing accept / reject / counter buttons).
    Lock state is not considered here.
    """
    if not is_my_turn(negotiation, actor_id):
        return []
    current = NegotiationStatus(negotiation.status)
    return sorted(_EVENT_NAMES[event_type] for event_type in VALID_TRANSITIONS[current])
