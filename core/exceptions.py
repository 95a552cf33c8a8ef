"""Payment settlement errors.

Every error carries the HTTP status the API boundary answers with. Errors
raised before a Payment row exists leave no trace; errors raised during
settlement abort the settlement unit of work.
"""

from decimal import Decimal
from typing import Any


class SettlementError(Exception):
    """Base exception for all settlement errors."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class BadRequestError(SettlementError):
    """Request cannot be processed as sent."""

    status_code = 400


class InvalidPurposeError(BadRequestError):
    """Unrecognized purpose or a purpose payload missing its required id."""

    pass


class AmountMismatchError(BadRequestError):
    """Declared amount differs from the gateway-verified amount."""

    def __init__(self, declared: Decimal, verified: Decimal) -> None:
        super().__init__(
            "Declared amount does not match verified amount",
            {"declared": str(declared), "verified": str(verified)},
        )


class GatewayDeclinedError(BadRequestError):
    """Gateway reports the transaction as not successful."""

    def __init__(self, reference: str, status: str | None = None) -> None:
        super().__init__(
            "Payment verification failed",
            {"reference": reference, "gateway_status": status},
        )


class GatewayUnavailableError(SettlementError):
    """Gateway could not be reached or timed out. Safe to retry."""

    status_code = 502


class DuplicateReferenceError(SettlementError):
    """Reference already recorded. Resolved as an idempotent replay."""

    status_code = 200

    def __init__(self, payment: Any) -> None:
        self.payment = payment
        super().__init__("Payment already recorded", {"reference": payment.reference})


class SettlementTargetNotFoundError(SettlementError):
    """Verified payment references a booking or order that does not exist."""

    status_code = 404

    def __init__(self, kind: str, target_id: str | None, reference: str) -> None:
        super().__init__(
            f"{kind} not found",
            {"target_id": target_id, "reference": reference},
        )


class SettlementConflictError(SettlementError):
    """Booking or order is already bound to a different payment."""

    status_code = 409

    def __init__(self, kind: str, target_id: str, reference: str) -> None:
        super().__init__(
            f"{kind} already settled by another payment",
            {"target_id": target_id, "reference": reference},
        )


class LedgerInconsistencyError(SettlementError):
    """Wallet ledger invariant violated. Never corrected silently."""

    pass


class InvalidArgumentError(LedgerInconsistencyError):
    """Ledger entry with a zero or negative amount."""

    def __init__(self, amount: Decimal) -> None:
        super().__init__("Ledger amount must be positive", {"amount": str(amount)})


class InsufficientBalanceError(BadRequestError):
    """Wallet cannot cover the requested payout."""

    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(
            "Insufficient balance",
            {"required": str(required), "available": str(available)},
        )


class PayoutStateError(BadRequestError):
    """Payout is no longer pending."""

    pass


class PayoutNotFoundError(SettlementError):
    """No payout request with the given id."""

    status_code = 404
