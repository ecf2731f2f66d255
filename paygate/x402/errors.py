# paygate/x402/errors.py
"""
Error taxonomy for the x402 payment protocol.

Every error carries a short machine-readable ``reason`` so that the
gatekeeper can put it straight into a 402 body and the buyer can hand it
back to its caller.
"""
from typing import Optional


class X402Error(Exception):
    """Base class for all protocol errors."""

    default_reason = "x402 error"

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(message or self.reason)


class ConfigError(X402Error):
    """Malformed route price/network or facilitator settings. Fatal at startup."""

    default_reason = "invalid configuration"


class EncodingError(X402Error):
    """Malformed payment header, settlement header or challenge body."""

    default_reason = "invalid encoding"


class VerificationFailure(X402Error):
    """A payload does not satisfy its requirements. Raised by the buyer's self-check before sending."""

    default_reason = "verification failed"


class FacilitatorUnavailable(X402Error):
    """Transport error or timeout talking to the facilitator."""

    default_reason = "facilitator unavailable"


class SettlementFailure(X402Error):
    """
    Verification passed but settlement did not complete.

    ``unconfirmed`` is set when the facilitator could not be reached during
    settlement, so the outcome on the ledger is unknown.
    """

    default_reason = "settlement failed"

    def __init__(
        self,
        message: Optional[str] = None,
        reason: Optional[str] = None,
        unconfirmed: bool = False,
    ):
        super().__init__(message, reason)
        self.unconfirmed = unconfirmed


class BuyerSigningError(X402Error):
    """The external signer failed or returned an unusable payload."""

    default_reason = "signing failed"


class PaymentCancelled(X402Error):
    """The buyer request was cancelled before a payment was constructed or sent."""

    default_reason = "cancelled"
