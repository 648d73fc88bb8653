"""
Negotiation Engine SQLAlchemy Models
====================================

Central import point for all ORM models. Import ``Base`` from here for the
``create_all`` convenience in tests.

Usage::

    from src.models import Base, Negotiation, OfferHistoryEntry
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- 001: Negotiations --
from .negotiation import (
    TERMINAL_STATUSES,
    ImmutableHistoryError,
    Negotiation,
    NegotiationStatus,
    OfferAction,
    OfferHistoryEntry,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Negotiations
    "Negotiation",
    "NegotiationStatus",
    "TERMINAL_STATUSES",
    "OfferAction",
    "OfferHistoryEntry",
    "ImmutableHistoryError",
]
