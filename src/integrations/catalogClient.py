"""
Product catalog client
======================

The negotiation engine only needs one fact from the remote catalog API: who
sells a given listing. ``HttpProductCatalog`` asks the catalog service for
``GET {catalog_api_url}/products/{product_id}/`` and reads the seller id
from the ``seller`` (or ``seller_id``) field.

Transient failures (5xx, timeouts, connection errors) are retried with
exponential backoff (3 attempts); 404 is surfaced as ``ProductNotFoundError``
and everything else that fails as ``CatalogUnavailableError``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Protocol

import httpx

from src.core.config import settings

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_INITIAL_BACKOFF_SECONDS = 0.5  # doubles each retry: 0.5, 1.0


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class CatalogError(Exception):
    """Base exception for catalog lookups."""


class ProductNotFoundError(CatalogError):
    """Raised when the catalog has no listing with the requested id."""

    def __init__(self, product_id: uuid.UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product '{product_id}' not found.")


class CatalogUnavailableError(CatalogError):
    """Raised when the catalog cannot be reached after all retries."""


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class ProductCatalog(Protocol):
    async def resolve_seller(self, product_id: uuid.UUID) -> uuid.UUID:
        ...


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------

def _extract_seller(payload: dict[str, Any], product_id: uuid.UUID) -> uuid.UUID:
    data = payload.get("data", payload)
    raw = data.get("seller_id", data.get("seller"))
    if isinstance(raw, dict):
        raw = raw.get("id")
    if raw is None:
        raise CatalogUnavailableError(
            f"Catalog response for product '{product_id}' has no seller."
        )
    try:
        return uuid.UUID(str(raw))
    except ValueError as exc:
        raise CatalogUnavailableError(
            f"Catalog returned an invalid seller id for product '{product_id}': {raw!r}"
        ) from exc


class HttpProductCatalog:
    """Resolves listing sellers through the remote catalog API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.catalog_api_url).rstrip("/")
        self.timeout = timeout or settings.catalog_timeout_seconds
        self._client = client

    async def _get(self, client: httpx.AsyncClient, product_id: uuid.UUID) -> dict[str, Any]:
        url = f"{self.base_url}/products/{product_id}/"
        last_exception: Exception | None = None
        backoff = _INITIAL_BACKOFF_SECONDS

        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                response = await client.get(url, timeout=self.timeout)
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exception = exc
                logger.warning(
                    "Catalog request failed on attempt %d/%d: %s",
                    attempt,
                    _MAX_RETRIES,
                    exc,
                )
            else:
                if response.status_code == 404:
                    raise ProductNotFoundError(product_id)
                if 400 <= response.status_code < 500:
                    raise CatalogUnavailableError(
                        f"Catalog API client error: HTTP {response.status_code}"
                    )
                if response.status_code < 400:
                    return response.json()
                last_exception = CatalogUnavailableError(
                    f"Catalog API server error: HTTP {response.status_code}"
                )
                logger.warning(
                    "Catalog API server error on attempt %d/%d: HTTP %d",
                    attempt,
                    _MAX_RETRIES,
                    response.status_code,
                )

            if attempt < _MAX_RETRIES:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise CatalogUnavailableError(
            f"Catalog API unavailable after {_MAX_RETRIES} attempts: {last_exception}"
        )

    async def resolve_seller(self, product_id: uuid.UUID) -> uuid.UUID:
        if self._client is not None:
            payload = await self._get(self._client, product_id)
        else:
            async with httpx.AsyncClient() as client:
                payload = await self._get(client, product_id)
        return _extract_seller(payload, product_id)
