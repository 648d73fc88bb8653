"""
Typed outcomes for negotiation operations.

Every expected failure of the negotiation engine is one of these exceptions.
Each carries a stable ``kind`` string (used on the wire) and the HTTP status
the gateway maps it to.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional


class NegotiationError(Exception):
    """Base exception for negotiation engine errors."""

    kind: str = "negotiation_error"
    http_status: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class NegotiationNotFoundError(NegotiationError):
    """Raised when the negotiation does not exist or is not visible to the caller."""

    kind = "not_found"
    http_status = 404

    def __init__(self, negotiation_id: Optional[uuid.UUID] = None, message: Optional[str] = None) -> None:
        self.negotiation_id = negotiation_id
        super().__init__(message or f"Negotiation '{negotiation_id}' not found.")


class LockHeldByOtherError(NegotiationError):
    """Raised when a live lease belongs to a different party."""

    kind = "lock_held_by_other"
    http_status = 423

    def __init__(self, lock_owner: uuid.UUID, lock_expires_in: int) -> None:
        self.lock_owner = lock_owner
        self.lock_expires_in = lock_expires_in
        super().__init__(
            f"Locked by other party, expires in {lock_expires_in}s."
        )

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["lock_expires_in"] = self.lock_expires_in
        return detail


class NotLockOwnerError(NegotiationError):
    """Raised when extend (or owner-only release) is attempted without a live owned lease."""

    kind = "not_lock_owner"
    http_status = 403


class TurnViolationError(NegotiationError):
    """Raised when the party that made the standing offer tries to act again."""

    kind = "turn_violation"
    http_status = 409

    def __init__(self, message: str = "It is not your turn: waiting for the other party to respond.") -> None:
        super().__init__(message)


class NegotiationClosedError(NegotiationError):
    """Raised when a mutation is attempted on a terminal negotiation."""

    kind = "negotiation_closed"
    http_status = 409

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Negotiation is closed (status: {status}).")


class NegotiationValidationError(NegotiationError):
    """Raised for invalid offer values or a patch that maps to no event."""

    kind = "validation_error"
    http_status = 422


class DuplicateNegotiationError(NegotiationError):
    """Raised when the buyer already has an open negotiation on the product."""

    kind = "conflict"
    http_status = 409

    def __init__(self, existing_id: uuid.UUID) -> None:
        self.existing_id = existing_id
        super().__init__(
            f"An open negotiation ('{existing_id}') already exists for this product."
        )

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["existing_id"] = str(self.existing_id)
        return detail
