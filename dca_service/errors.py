"""
Error taxonomy for the DCA order engine.

Every error is terminal for the operation that raised it: the staged unit of
work is discarded and the caller receives the named reason. The engine never
retries on its own.

AUTHORIZATION ERRORS:
- CallerNotBorrower: caller/signer is not the declared owner
- InvalidSignature: signature could not be decoded or recovered
- IncorrectSignatureNonce: supplied nonce is not the signer's current counter

VALIDATION ERRORS:
- InvalidOrder: malformed order parameters at submission
- OrderIsCancelled: order not found, cancelled or completed
- CreditAccountBorrowerChanged: resource control changed since submission
- Expired: order deadline passed
- IntervalNotPassed: minimum interval since last purchase not elapsed
- PriceSwingTooLarge: price moved beyond the circuit-breaker band
"""

from typing import Optional


class DCAOrderError(Exception):
    """Base class for all engine errors."""

    reason = "DCAOrderError"

    def __init__(self, message: str = "", order_id: Optional[int] = None):
        self.message = message or self.reason
        self.order_id = order_id
        super().__init__(self.message)


# ============================================================================
# AUTHORIZATION
# ============================================================================

class AuthorizationError(DCAOrderError):
    reason = "AuthorizationError"


class CallerNotBorrower(AuthorizationError):
    reason = "CallerNotBorrower"


class InvalidSignature(CallerNotBorrower):
    reason = "InvalidSignature"


class IncorrectSignatureNonce(AuthorizationError):
    reason = "IncorrectSignatureNonce"

    def __init__(self, signer: str, expected: int, supplied: int):
        self.signer = signer
        self.expected = expected
        self.supplied = supplied
        super().__init__(
            f"Nonce {supplied} does not match current nonce {expected} for {signer}"
        )


# ============================================================================
# VALIDATION
# ============================================================================

class OrderValidationError(DCAOrderError):
    reason = "OrderValidationError"


class InvalidOrder(OrderValidationError):
    reason = "InvalidOrder"


class OrderIsCancelled(OrderValidationError):
    reason = "OrderIsCancelled"


class CreditAccountBorrowerChanged(OrderValidationError):
    reason = "CreditAccountBorrowerChanged"


class Expired(OrderValidationError):
    reason = "Expired"


class IntervalNotPassed(OrderValidationError):
    reason = "IntervalNotPassed"


class PriceSwingTooLarge(OrderValidationError):
    reason = "PriceSwingTooLarge"

    def __init__(self, swing_pct: int, max_pct: int, order_id: Optional[int] = None):
        self.swing_pct = swing_pct
        self.max_pct = max_pct
        super().__init__(
            f"Price moved {swing_pct}% since last snapshot (max {max_pct}%)",
            order_id=order_id,
        )
