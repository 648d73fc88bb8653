"""
Unit tests for the product catalog client.

The catalog API is simulated with ``httpx.MockTransport`` so the retry and
error mapping logic runs without network access.
"""

import uuid

import httpx
import pytest

from src.integrations import catalogClient
from src.integrations.catalogClient import (
    CatalogUnavailableError,
    HttpProductCatalog,
    ProductNotFoundError,
)
from tests.conftest import PRODUCT_ID, SELLER_ID


pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(catalogClient, "_INITIAL_BACKOFF_SECONDS", 0)


def _catalog(handler) -> HttpProductCatalog:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpProductCatalog(base_url="http://catalog.test/api/v1/", client=client)


class TestResolveSeller:

    async def test_reads_seller_id(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"id": str(PRODUCT_ID), "seller_id": str(SELLER_ID)})

        assert await _catalog(handler).resolve_seller(PRODUCT_ID) == SELLER_ID
        assert seen == [f"http://catalog.test/api/v1/products/{PRODUCT_ID}/"]

    async def test_reads_nested_seller_object(self):
        def handler(request):
            return httpx.Response(
                200, json={"data": {"seller": {"id": str(SELLER_ID), "name": "Acme"}}}
            )

        assert await _catalog(handler).resolve_seller(PRODUCT_ID) == SELLER_ID

    async def test_missing_product(self):
        def handler(request):
            return httpx.Response(404, json={"detail": "Not found."})

        with pytest.raises(ProductNotFoundError):
            await _catalog(handler).resolve_seller(PRODUCT_ID)

    async def test_missing_seller_field(self):
        def handler(request):
            return httpx.Response(200, json={"id": str(PRODUCT_ID)})

        with pytest.raises(CatalogUnavailableError):
            await _catalog(handler).resolve_seller(PRODUCT_ID)

    async def test_invalid_seller_id(self):
        def handler(request):
            return httpx.Response(200, json={"seller": "not-a-uuid"})

        with pytest.raises(CatalogUnavailableError):
            await _catalog(handler).resolve_seller(PRODUCT_ID)


class TestRetries:

    async def test_server_error_retried_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"seller": str(SELLER_ID)})

        assert await _catalog(handler).resolve_seller(PRODUCT_ID) == SELLER_ID
        assert len(calls) == 3

    async def test_gives_up_after_three_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CatalogUnavailableError):
            await _catalog(handler).resolve_seller(uuid.uuid4())
        assert len(calls) == 3

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        with pytest.raises(CatalogUnavailableError):
            await _catalog(handler).resolve_seller(PRODUCT_ID)
        assert len(calls) == 1
