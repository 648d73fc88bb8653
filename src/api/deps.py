"""
Shared FastAPI dependencies for the negotiation service.

Provides the async database session dependency used by all route handlers,
caller identity from JWT Bearer tokens, the product catalog collaborator,
and the order-service token check.
"""

from __future__ import annotations

import hmac
import uuid
from collections.abc import AsyncGenerator
from typing import Annotated, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import settings
from src.integrations.catalogClient import HttpProductCatalog, ProductCatalog

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time.  The session factory
# produces lightweight ``AsyncSession`` instances that are scoped to a single
# request via the ``get_db`` dependency below.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session that is committed when the request
    succeeds and rolled back when it raises, so a failed negotiation
    operation never leaves partial state or history behind.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=True)


def decode_party_id(token: str) -> uuid.UUID:
    """Return the party id carried in the token's ``sub`` claim.

    Raises:
        ValueError: If the token is expired, invalid, or has no usable subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise ValueError("Token has expired.")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid token.")

    subject = payload.get("sub")
    if not subject:
        raise ValueError("Token has no subject.")
    try:
        return uuid.UUID(str(subject))
    except ValueError:
        raise ValueError("Token subject is not a valid party id.")


async def get_current_party_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
) -> uuid.UUID:
    """Extract the caller's party id from the Bearer token.

    The identity provider issues the token; this service trusts its ``sub``
    and uses it only for turn, lock and ownership checks.
    """
    try:
        return decode_party_id(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentParty = Annotated[uuid.UUID, Depends(get_current_party_id)]


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

def get_product_catalog() -> ProductCatalog:
    return HttpProductCatalog()


Catalog = Annotated[ProductCatalog, Depends(get_product_catalog)]


def require_order_service(
    x_service_token: Annotated[Optional[str], Header()] = None,
) -> None:
    """Only the order service may confirm ``ACCEPTED -> ORDERED``."""
    expected = settings.order_service_token
    if not expected or not x_service_token or not hmac.compare_digest(
        x_service_token, expected
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="A valid order service token is required.",
        )


OrderService = Annotated[None, Depends(require_order_service)]
