"""
Negotiation API Routes
======================

REST endpoints for the B2B price/quantity negotiation engine.

  GET   /api/v1/negotiations                          -- List caller's negotiations
  POST  /api/v1/negotiations                          -- Open a negotiation (caller is buyer)
  GET   /api/v1/negotiations/active?product_id=...    -- Open negotiation on a product
  GET   /api/v1/negotiations/{negotiation_id}         -- Get one negotiation
  PATCH /api/v1/negotiations/{negotiation_id}         -- Accept / reject / counter
  POST  /api/v1/negotiations/{negotiation_id}/lock          -- Acquire the edit lock
  POST  /api/v1/negotiations/{negotiation_id}/lock/extend   -- Extend own lock
  POST  /api/v1/negotiations/{negotiation_id}/lock/release  -- Force-release the lock
  POST  /api/v1/negotiations/{negotiation_id}/order   -- Order service: ACCEPTED -> ORDERED

Engine outcomes (lock held, turn violation, closed, ...) are returned as
structured ``{"error": kind, "message": ...}`` details, never as unhandled
exceptions.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from src.api.deps import Catalog, CurrentParty, DBSession, OrderService
from src.api.schemas.negotiation import (
    ConfirmOrderRequest,
    CreateNegotiationRequest,
    NegotiationResponse,
    UpdateNegotiationRequest,
)
from src.core.config import settings
from src.integrations.catalogClient import CatalogUnavailableError, ProductNotFoundError
from src.models import NegotiationStatus
from src.services import negotiationStore
from src.services.negotiationErrors import NegotiationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/negotiations", tags=["Negotiations"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _raise_http(exc: NegotiationError) -> NoReturn:
    logger.info("Negotiation request refused: %s (%s)", exc.kind, exc.message)
    raise HTTPException(status_code=exc.http_status, detail=exc.to_detail())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# GET /negotiations
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[NegotiationResponse],
    summary="List the caller's negotiations",
    description=(
        "Returns every negotiation where the caller is buyer or seller, most "
        "recently updated first. Clients poll this endpoint; the suggested "
        "interval is returned in the X-Poll-Interval header."
    ),
)
async def list_negotiations(
    db: DBSession,
    party_id: CurrentParty,
    response: Response,
    status_filter: Optional[NegotiationStatus] = Query(default=None, alias="status"),
) -> list[NegotiationResponse]:
    negotiations = await negotiationStore.list_negotiations(db, party_id, status=status_filter)
    response.headers["X-Poll-Interval"] = str(settings.client_poll_interval_seconds)
    now = _now()
    return [NegotiationResponse.build(n, party_id, now) for n in negotiations]


# ---------------------------------------------------------------------------
# POST /negotiations
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=NegotiationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a negotiation on a listing",
    description=(
        "The caller becomes the buyer and proposes an opening price and "
        "quantity. The seller is resolved from the product catalog."
    ),
)
async def create_negotiation(
    body: CreateNegotiationRequest,
    db: DBSession,
    party_id: CurrentParty,
    catalog: Catalog,
) -> NegotiationResponse:
    try:
        seller_id = await catalog.resolve_seller(body.product_id)
    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": str(exc)},
        )
    except CatalogUnavailableError as exc:
        logger.error("Catalog lookup failed for product %s: %s", body.product_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "catalog_unavailable", "message": "Catalog unavailable, retry later."},
        )

    try:
        negotiation = await negotiationStore.create_negotiation(
            db,
            product_id=body.product_id,
            buyer_id=party_id,
            seller_id=seller_id,
            price=body.proposed_price,
            quantity=body.proposed_quantity,
            message=body.message,
        )
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, party_id, _now())


# ---------------------------------------------------------------------------
# GET /negotiations/active
# ---------------------------------------------------------------------------

@router.get(
    "/active",
    response_model=Optional[NegotiationResponse],
    summary="Get the caller's open negotiation on a product",
    description=(
        "Used to resume an offer on a product page. Returns null when the "
        "caller has no PENDING or COUNTER_OFFER negotiation on the product."
    ),
)
async def get_active_negotiation(
    db: DBSession,
    party_id: CurrentParty,
    product_id: uuid.UUID = Query(description="UUID of the listing"),
) -> Optional[NegotiationResponse]:
    negotiation = await negotiationStore.get_active_for_product(db, product_id, party_id)
    if negotiation is None:
        return None
    return NegotiationResponse.build(negotiation, party_id, _now())


# ---------------------------------------------------------------------------
# GET /negotiations/{negotiation_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{negotiation_id}",
    response_model=NegotiationResponse,
    summary="Get a negotiation with its offer history",
)
async def get_negotiation(
    negotiation_id: uuid.UUID,
    db: DBSession,
    party_id: CurrentParty,
) -> NegotiationResponse:
    try:
        negotiation = await negotiationStore.get_negotiation(db, negotiation_id, party_id)
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, party_id, _now())


# ---------------------------------------------------------------------------
# PATCH /negotiations/{negotiation_id}
# ---------------------------------------------------------------------------

@router.patch(
    "/{negotiation_id}",
    response_model=NegotiationResponse,
    summary="Accept, reject or counter the standing offer",
    description=(
        "Send {status: ACCEPTED} or {status: REJECTED} to close the "
        "negotiation, or a price and/or quantity (optionally with "
        "status COUNTER_OFFER) to counter. Only the party that did not make "
        "the standing offer may act, and not while the other party holds a "
        "live edit lock."
    ),
)
async def update_negotiation(
    negotiation_id: uuid.UUID,
    body: UpdateNegotiationRequest,
    db: DBSession,
    party_id: CurrentParty,
) -> NegotiationResponse:
    try:
        negotiation = await negotiationStore.update_negotiation(
            db, negotiation_id, party_id, body.to_patch()
        )
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, party_id, _now())


# ---------------------------------------------------------------------------
# Lock endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/{negotiation_id}/lock",
    response_model=NegotiationResponse,
    summary="Acquire the edit lock",
    description=(
        "Grants the caller an exclusive edit lease for lock_ttl_seconds. "
        "Re-acquiring an own lease refreshes it; an expired lease of the "
        "other party is reclaimed."
    ),
)
async def acquire_lock(
    negotiation_id: uuid.UUID,
    db: DBSession,
    party_id: CurrentParty,
) -> NegotiationResponse:
    try:
        negotiation = await negotiationStore.acquire_lock(db, negotiation_id, party_id)
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, party_id, _now())


@router.post(
    "/{negotiation_id}/lock/extend",
    response_model=NegotiationResponse,
    summary="Extend the caller's edit lock",
    description="Restarts the caller's live lease at the full TTL. Expired leases must be re-acquired.",
)
async def extend_lock(
    negotiation_id: uuid.UUID,
    db: DBSession,
    party_id: CurrentParty,
) -> NegotiationResponse:
    try:
        negotiation = await negotiationStore.extend_lock(db, negotiation_id, party_id)
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, party_id, _now())


@router.post(
    "/{negotiation_id}/lock/release",
    response_model=NegotiationResponse,
    summary="Force-release the edit lock",
    description="Clears the lease regardless of owner (subject to the configured policy). Idempotent.",
)
async def force_release_lock(
    negotiation_id: uuid.UUID,
    db: DBSession,
    party_id: CurrentParty,
) -> NegotiationResponse:
    try:
        negotiation = await negotiationStore.force_release_lock(db, negotiation_id, party_id)
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, party_id, _now())


# ---------------------------------------------------------------------------
# POST /negotiations/{negotiation_id}/order
# ---------------------------------------------------------------------------

@router.post(
    "/{negotiation_id}/order",
    response_model=NegotiationResponse,
    summary="Confirm an order at the negotiated terms",
    description=(
        "Called by the order service (X-Service-Token) once a purchase at the "
        "accepted price and quantity is confirmed. Moves ACCEPTED to ORDERED."
    ),
)
async def confirm_order(
    negotiation_id: uuid.UUID,
    body: ConfirmOrderRequest,
    db: DBSession,
    _service: OrderService,
) -> NegotiationResponse:
    try:
        negotiation = await negotiationStore.mark_ordered(
            db, negotiation_id, order_reference=body.order_reference
        )
    except NegotiationError as exc:
        _raise_http(exc)
    return NegotiationResponse.build(negotiation, negotiation.buyer_id, _now())
