"""
SQLAlchemy models for negotiations and negotiation_offer_history.
Corresponds to migration 001_create_negotiations.sql.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class NegotiationStatus(str, enum.Enum):
    PENDING = "PENDING"
    COUNTER_OFFER = "COUNTER_OFFER"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ORDERED = "ORDERED"                        # order service confirmed purchase


TERMINAL_STATUSES: frozenset[NegotiationStatus] = frozenset({
    NegotiationStatus.ACCEPTED,
    NegotiationStatus.REJECTED,
    NegotiationStatus.ORDERED,
})


class OfferAction(str, enum.Enum):
    OFFERED = "offered"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ORDERED = "ordered"


class Negotiation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "negotiations"

    # Parties and listing
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )

    # Standing offer
    status: Mapped[NegotiationStatus] = mapped_column(
        Enum(NegotiationStatus, name="negotiation_status", native_enum=False, length=20),
        nullable=False,
        default=NegotiationStatus.PENDING,
    )
    proposed_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    proposed_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    last_offer_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    # Edit lease
    lock_owner: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    lock_acquired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    lock_ttl_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)

    # Set by the order service on ACCEPTED -> ORDERED
    order_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Relationships
    history: Mapped[list["OfferHistoryEntry"]] = relationship(
        "OfferHistoryEntry",
        back_populates="negotiation",
        order_by="OfferHistoryEntry.sequence",
        cascade="save-update, merge",
        lazy="selectin",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_party(self, actor_id: uuid.UUID) -> bool:
        return actor_id in (self.buyer_id, self.seller_id)

    def __repr__(self) -> str:
        return (
            f"<Negotiation(id={self.id}, product={self.product_id}, "
            f"status={self.status}, price={self.proposed_price}, "
            f"qty={self.proposed_quantity})>"
        )


class OfferHistoryEntry(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "negotiation_offer_history"
    __table_args__ = (
        UniqueConstraint("negotiation_id", "sequence", name="uq_offer_history_sequence"),
    )

    negotiation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("negotiations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[OfferAction] = mapped_column(
        Enum(
            OfferAction,
            name="offer_action",
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    offer_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    negotiation: Mapped["Negotiation"] = relationship(
        "Negotiation", back_populates="history"
    )

    def __repr__(self) -> str:
        return (
            f"<OfferHistoryEntry(negotiation={self.negotiation_id}, "
            f"seq={self.sequence}, action={self.action}, price={self.price})>"
        )


class ImmutableHistoryError(Exception):
    """Raised when code attempts to modify or delete an offer history row."""


@event.listens_for(OfferHistoryEntry, "before_update")
def _reject_history_update(mapper, connection, target) -> None:
    raise ImmutableHistoryError(
        f"Offer history entry {target.id} is append-only and cannot be updated."
    )


@event.listens_for(OfferHistoryEntry, "before_delete")
def _reject_history_delete(mapper, connection, target) -> None:
    raise ImmutableHistoryError(
        f"Offer history entry {target.id} is append-only and cannot be deleted."
    )
