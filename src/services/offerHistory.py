"""
Offer History -- append-only ledger of every negotiation proposal.

One entry is written per accepted state transition: the seed offer at
creation, every counter-offer, and the accept / reject / ordered events
(which repeat the standing price and quantity). Entries are ordered by
their per-negotiation ``sequence`` and are never reordered or mutated.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.models import Negotiation, OfferAction, OfferHistoryEntry


def append_entry(
    negotiation: Negotiation,
    *,
    action: OfferAction,
    offer_by: uuid.UUID,
    price: Decimal,
    quantity: int,
    message: Optional[str],
    now: datetime,
) -> OfferHistoryEntry:
    """Append a new entry to the negotiation's history.

    The entry is attached through the relationship, so it is persisted by the
    same flush that writes the negotiation row.
    """
    entry = OfferHistoryEntry(
        id=uuid.uuid4(),
        sequence=len(negotiation.history) + 1,
        action=action,
        offer_by=offer_by,
        price=price,
        quantity=quantity,
        message=message,
        timestamp=now,
    )
    negotiation.history.append(entry)
    return entry


def entries(negotiation: Negotiation) -> tuple[OfferHistoryEntry, ...]:
    """Return the history oldest first as an immutable tuple."""
    return tuple(sorted(negotiation.history, key=lambda e: e.sequence))


def latest_message(negotiation: Negotiation) -> Optional[str]:
    """Message attached to the most recent entry, if any."""
    history = entries(negotiation)
    return history[-1].message if history else None
