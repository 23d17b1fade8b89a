"""Exception hierarchy for the Sardis immune engine.

All engine errors inherit from ImmuneError so the consuming service can map
them onto HTTP responses the same way it maps SardisException.

Absence (unknown counterparty, no signals, no patterns) is never an error;
those paths return None or empty lists.

Usage:
    from sardis_immune.exceptions import ImmuneError, InvalidDecisionError

    try:
        store.record_transaction_outcome(tx, payload)
    except InvalidDecisionError as e:
        return JSONResponse(e.to_dict(), status_code=e.http_status)
"""
from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ImmuneError(Exception):
    """Base exception for immune engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "INVALID_DECISION")
        details: Optional additional context
    """

    error_code: str = "IMMUNE_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Boundary validation (4xx)
# =============================================================================

class ImmuneValidationError(ImmuneError):
    """Input rejected before it reached the memory store."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class InvalidTransactionError(ImmuneValidationError):
    """Transaction record is malformed (negative amount, bad lifecycle move, ...)."""

    error_code = "INVALID_TRANSACTION"


class InvalidDecisionError(ImmuneValidationError):
    """Decision payload is missing a required field or carries a bad value."""

    error_code = "INVALID_DECISION"


class DuplicateTransactionError(ImmuneError):
    """Transaction id already present in the ledger."""

    error_code = "DUPLICATE_TRANSACTION"
    http_status = 409

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            f"Transaction '{transaction_id}' already recorded",
            details={"transaction_id": transaction_id},
        )


class _NotFoundError(ImmuneError):
    error_code = "NOT_FOUND"
    http_status = 404
    resource_type = "resource"

    def __init__(self, resource_id: str) -> None:
        super().__init__(
            f"{self.resource_type} '{resource_id}' not found",
            details={"resource_type": self.resource_type, "resource_id": resource_id},
        )


class TransactionNotFoundError(_NotFoundError):
    error_code = "TRANSACTION_NOT_FOUND"
    resource_type = "Transaction"


class PatternNotFoundError(_NotFoundError):
    error_code = "PATTERN_NOT_FOUND"
    resource_type = "Pattern"


class SignalNotFoundError(_NotFoundError):
    error_code = "SIGNAL_NOT_FOUND"
    resource_type = "RiskSignal"


# =============================================================================
# Internal errors (5xx)
# =============================================================================

class InvariantViolationError(ImmuneError):
    """An internal invariant of the immune memory was broken.

    Should not occur under correct use. Always logged at ERROR level when
    raised through raise_invariant_violation().
    """

    error_code = "INVARIANT_VIOLATION"
    http_status = 500

    def __init__(self, invariant: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        details = details or {}
        details["invariant"] = invariant
        super().__init__(message, details=details)
        self.invariant = invariant


class ImmuneStoreClosedError(ImmuneError):
    """Mutation attempted on a store that has been closed."""

    error_code = "STORE_CLOSED"
    http_status = 503

    def __init__(self) -> None:
        super().__init__("Immune memory store is closed")


def raise_invariant_violation(invariant: str, message: str, **details: Any) -> None:
    """Log and raise an InvariantViolationError."""
    logger.error(
        "Immune invariant violated: %s (%s)",
        invariant,
        message,
        extra={"invariant": invariant, "violation_details": details},
    )
    raise InvariantViolationError(invariant, message, details=dict(details))
