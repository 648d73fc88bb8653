"""
Pydantic v2 schemas for the Negotiation API.

Covers:
- Create negotiation (buyer opens an offer on a listing)
- Update negotiation (combined accept / reject / counter request)
- Order confirmation (order service)
- Negotiation output with derived lock fields and offer history
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.models import Negotiation, NegotiationStatus, OfferAction
from src.services import lockManager, negotiationStateMachine, offerHistory
from src.services.negotiationStateMachine import NegotiationPatch


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class CreateNegotiationRequest(BaseModel):
    """Request body for opening a negotiation. The caller is the buyer."""

    product_id: uuid.UUID = Field(
        validation_alias=AliasChoices("product_id", "product"),
        description="UUID of the listing to negotiate on",
    )
    proposed_price: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Opening unit price offer (must be positive)",
    )
    proposed_quantity: int = Field(description="Opening quantity (at least 1)")
    message: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Optional note to the seller",
    )


class UpdateNegotiationRequest(BaseModel):
    """Combined accept / reject / counter request.

    - ``{"status": "ACCEPTED"}`` accepts the standing offer
    - ``{"status": "REJECTED"}`` rejects it
    - ``{"price": ..., "quantity": ..., "status": "COUNTER_OFFER"}`` counters
      (``status`` may be omitted when price or quantity is present)

    Value checks (price > 0, quantity >= 1) are done by the state machine so
    they surface as the engine's ``validation_error`` kind.
    """

    model_config = ConfigDict(extra="forbid")

    status: Optional[NegotiationStatus] = None
    price: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    quantity: Optional[int] = None
    message: Optional[str] = Field(default=None, max_length=2000)

    def to_patch(self) -> NegotiationPatch:
        return NegotiationPatch(
            status=self.status,
            price=self.price,
            quantity=self.quantity,
            message=self.message,
        )


class ConfirmOrderRequest(BaseModel):
    """Request body sent by the order service once a purchase is confirmed."""

    order_reference: Optional[str] = Field(default=None, max_length=100)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OfferHistoryEntryResponse(BaseModel):
    """One immutable entry of the offer history."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    negotiation_id: uuid.UUID
    sequence: int
    action: OfferAction
    offer_by: uuid.UUID
    price: Decimal
    quantity: int
    message: Optional[str] = None
    timestamp: datetime


class NegotiationResponse(BaseModel):
    """Negotiation as seen by one of its parties."""

    id: uuid.UUID
    product_id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    status: NegotiationStatus
    proposed_price: Decimal
    proposed_quantity: int
    last_offer_by: uuid.UUID
    order_reference: Optional[str] = None

    # Lease, derived at read time
    lock_owner: Optional[uuid.UUID] = None
    lock_acquired_at: Optional[datetime] = None
    lock_ttl_seconds: int
    is_locked: bool
    lock_expires_in: int = 0
    lock_expires_at: Optional[datetime] = None

    # Caller-relative hints
    is_my_turn: bool = False
    available_actions: list[str] = Field(default_factory=list)
    latest_message: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    history: list[OfferHistoryEntryResponse] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        negotiation: Negotiation,
        viewer_id: uuid.UUID,
        now: datetime,
    ) -> "NegotiationResponse":
        lock = lockManager.lock_status(negotiation, now)
        return cls(
            id=negotiation.id,
            product_id=negotiation.product_id,
            buyer_id=negotiation.buyer_id,
            seller_id=negotiation.seller_id,
            status=negotiation.status,
            proposed_price=negotiation.proposed_price,
            proposed_quantity=negotiation.proposed_quantity,
            last_offer_by=negotiation.last_offer_by,
            order_reference=negotiation.order_reference,
            lock_owner=lock.owner,
            lock_acquired_at=negotiation.lock_acquired_at if lock.is_locked else None,
            lock_ttl_seconds=negotiation.lock_ttl_seconds,
            is_locked=lock.is_locked,
            lock_expires_in=lock.expires_in,
            lock_expires_at=lock.expires_at,
            is_my_turn=negotiationStateMachine.is_my_turn(negotiation, viewer_id),
            available_actions=negotiationStateMachine.available_actions(negotiation, viewer_id),
            latest_message=offerHistory.latest_message(negotiation),
            created_at=negotiation.created_at,
            updated_at=negotiation.updated_at,
            history=[
                OfferHistoryEntryResponse.model_validate(entry)
                for entry in offerHistory.entries(negotiation)
            ],
        )
