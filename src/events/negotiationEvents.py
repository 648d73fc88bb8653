"""
Negotiation Event Emission Stubs
================================

Event system for negotiation lifecycle changes. Each function emits an event
that downstream consumers (the marketplace "negotiation" notification
category, analytics) can subscribe to.

The transport (message broker or event bus) is not wired here: each emitter
logs the event and returns the payload dict so callers can integrate with
it immediately.

Events emitted:
  - negotiation.created
  - negotiation.countered
  - negotiation.accepted
  - negotiation.rejected
  - negotiation.ordered
  - negotiation.lock_force_released
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)


def _build_event(
    event_type: str,
    negotiation_id: uuid.UUID,
    *,
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
    recipient_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    return {
        "event_type": event_type,
        "negotiation_id": str(negotiation_id),
        "actor_id": str(actor_id) if actor_id else None,
        "recipient_id": str(recipient_id) if recipient_id else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def emit_negotiation_created(
    negotiation_id: uuid.UUID,
    product_id: uuid.UUID,
    buyer_id: uuid.UUID,
    seller_id: uuid.UUID,
    price: Decimal,
    quantity: int,
) -> dict[str, Any]:
    """Emit event when a buyer opens a negotiation on a listing."""
    event = _build_event(
        "negotiation.created",
        negotiation_id,
        actor_id=buyer_id,
        recipient_id=seller_id,
        data={
            "product_id": str(product_id),
            "price": str(price),
            "quantity": quantity,
        },
    )
    logger.info("Event emitted: %s for negotiation %s", event["event_type"], negotiation_id)
    return event


def emit_offer_countered(
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
    recipient_id: uuid.UUID,
    price: Decimal,
    quantity: int,
) -> dict[str, Any]:
    """Emit event when a party submits a counter-offer."""
    event = _build_event(
        "negotiation.countered",
        negotiation_id,
        actor_id=actor_id,
        recipient_id=recipient_id,
        data={"price": str(price), "quantity": quantity},
    )
    logger.info("Event emitted: %s for negotiation %s", event["event_type"], negotiation_id)
    return event


def emit_negotiation_closed(
    negotiation_id: uuid.UUID,
    status: str,
    actor_id: uuid.UUID,
    recipient_id: uuid.UUID,
    price: Decimal,
    quantity: int,
) -> dict[str, Any]:
    """Emit ``negotiation.accepted`` or ``negotiation.rejected``."""
    event = _build_event(
        f"negotiation.{status.lower()}",
        negotiation_id,
        actor_id=actor_id,
        recipient_id=recipient_id,
        data={"price": str(price), "quantity": quantity},
    )
    logger.info("Event emitted: %s for negotiation %s", event["event_type"], negotiation_id)
    return event


def emit_negotiation_ordered(
    negotiation_id: uuid.UUID,
    buyer_id: uuid.UUID,
    seller_id: uuid.UUID,
    order_reference: str | None,
) -> dict[str, Any]:
    """Emit event when the order service confirms a purchase at negotiated terms."""
    event = _build_event(
        "negotiation.ordered",
        negotiation_id,
        recipient_id=seller_id,
        data={
            "buyer_id": str(buyer_id),
            "order_reference": order_reference,
        },
    )
    logger.info("Event emitted: %s for negotiation %s", event["event_type"], negotiation_id)
    return event


def emit_lock_force_released(
    negotiation_id: uuid.UUID,
    actor_id: uuid.UUID,
    previous_owner: uuid.UUID,
) -> dict[str, Any]:
    """Emit event when a party breaks someone else's live lease."""
    event = _build_event(
        "negotiation.lock_force_released",
        negotiation_id,
        actor_id=actor_id,
        recipient_id=previous_owner,
    )
    logger.warning(
        "Event emitted: %s for negotiation %s (previous owner %s)",
        event["event_type"],
        negotiation_id,
        previous_owner,
    )
    return event
