"""
E2E test fixtures for the negotiation API.

Provides:
- The production FastAPI app with the DB session dependency pointed at the
  in-memory SQLite session from ``tests/conftest.py``
- A static product catalog in place of the remote catalog API
- httpx AsyncClient wired via ASGI transport (no network needed)
- Helpers for bearer tokens and common API calls

Identity is exercised end to end: requests carry real HS256 tokens signed
with the configured secret.
"""

from __future__ import annotations

import uuid
from typing import Any, AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.integrations.catalogClient import ProductNotFoundError
from tests.conftest import OTHER_PRODUCT_ID, PRODUCT_ID, SELLER_ID

ORDER_SERVICE_TOKEN = "test-order-service-token"
BASE = "/api/v1/negotiations"


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


class StaticCatalog:
    """Catalog with two listings, both sold by ``SELLER_ID``."""

    sellers = {PRODUCT_ID: SELLER_ID, OTHER_PRODUCT_ID: SELLER_ID}

    async def resolve_seller(self, product_id: uuid.UUID) -> uuid.UUID:
        try:
            return self.sellers[product_id]
        except KeyError:
            raise ProductNotFoundError(product_id)


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def auth(party_id: uuid.UUID) -> dict[str, str]:
    token = jwt.encode(
        {"sub": str(party_id)}, settings.jwt_secret, algorithm=settings.jwt_algorithm
    )
    return {"Authorization": f"Bearer {token}"}


def order_service_headers() -> dict[str, str]:
    return {"X-Service-Token": ORDER_SERVICE_TOKEN}


# ---------------------------------------------------------------------------
# App + client
# ---------------------------------------------------------------------------


def _create_test_app(db_session_override: AsyncSession):
    """Return the application with DB and catalog dependencies overridden."""
    from src.api.deps import get_db, get_product_catalog
    from src.main import app

    async def _override_get_db():
        yield db_session_override

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_product_catalog] = StaticCatalog
    return app


@pytest.fixture(autouse=True)
def order_service_token(monkeypatch):
    monkeypatch.setattr(settings, "order_service_token", ORDER_SERVICE_TOKEN)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------


async def create_negotiation_via_api(
    client: AsyncClient,
    buyer_id: uuid.UUID,
    product_id: uuid.UUID = PRODUCT_ID,
    price: str = "500.00",
    quantity: int = 10,
    message: str | None = None,
) -> dict[str, Any]:
    """Open a negotiation and return the response body (asserts 201)."""
    resp = await client.post(
        BASE,
        json={
            "product_id": str(product_id),
            "proposed_price": price,
            "proposed_quantity": quantity,
            "message": message,
        },
        headers=auth(buyer_id),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def patch_negotiation(
    client: AsyncClient,
    negotiation_id: str,
    actor_id: uuid.UUID,
    **body: Any,
):
    return await client.patch(
        f"{BASE}/{negotiation_id}", json=body, headers=auth(actor_id)
    )


async def lock_action(
    client: AsyncClient,
    negotiation_id: str,
    actor_id: uuid.UUID,
    action: str = "",
):
    path = f"{BASE}/{negotiation_id}/lock"
    if action:
        path = f"{path}/{action}"
    return await client.post(path, headers=auth(actor_id))
