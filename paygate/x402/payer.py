# paygate/x402/payer.py
"""
Buyer-side payment construction.

The builder copies the challenged requirements into an unsigned
authorization with a fresh nonce; signing is delegated to a Signer
supplied by the caller. Nothing here holds keys or talks to a ledger.
"""
import logging
import secrets
from typing import Optional, Protocol, runtime_checkable

from paygate.x402.challenge import check_payload
from paygate.x402.errors import BuyerSigningError, VerificationFailure
from paygate.x402.types import PaymentPayload, PaymentRequirements, UnsignedAuthorization

logger = logging.getLogger(__name__)

NONCE_BYTES = 32


@runtime_checkable
class Signer(Protocol):
    """Signs an authorization with the payer's key."""

    def sign(self, unsigned: UnsignedAuthorization) -> PaymentPayload:
        ...


@runtime_checkable
class BalanceReader(Protocol):
    """Reads an account balance in the smallest ledger unit."""

    def balance(self, address: str) -> int:
        ...


def generate_nonce() -> str:
    return "0x" + secrets.token_hex(NONCE_BYTES)


def build_authorization(
    requirements: PaymentRequirements,
    payer_address: str,
    *,
    nonce: Optional[str] = None,
) -> UnsignedAuthorization:
    """Mirror ``requirements`` into an unsigned authorization from ``payer_address``."""
    return UnsignedAuthorization(
        scheme=requirements.scheme,
        network=requirements.network,
        recipient=requirements.recipient,
        amount=requirements.amount,
        resource=requirements.resource,
        payer=payer_address,
        nonce=nonce or generate_nonce(),
        expires_at=requirements.expires_at,
    )


def sign_authorization(unsigned: UnsignedAuthorization, signer: Signer) -> PaymentPayload:
    """
    Have ``signer`` sign ``unsigned`` and check what comes back.

    Raises:
        BuyerSigningError: If the signer raises, or returns something that is
            not a PaymentPayload for exactly this authorization
    """
    try:
        signed = signer.sign(unsigned)
    except Exception as e:
        logger.error(f"x402: Signer failed for nonce {unsigned.nonce}: {e}")
        raise BuyerSigningError(f"Signer failed: {e}", reason="signing failed") from e

    if not isinstance(signed, PaymentPayload):
        raise BuyerSigningError(
            f"Signer returned {type(signed).__name__}, expected PaymentPayload",
            reason="signing failed",
        )
    if signed.unsigned() != unsigned:
        raise BuyerSigningError("Signer altered the authorization it was asked to sign", reason="signing failed")
    return signed


def build_payment(
    requirements: PaymentRequirements,
    payer_address: str,
    signer: Signer,
    *,
    nonce: Optional[str] = None,
) -> PaymentPayload:
    """
    Build, sign and self-check one payment for ``requirements``.

    Raises:
        BuyerSigningError: If the signer fails
        VerificationFailure: If the signed payload would not satisfy ``requirements``
    """
    unsigned = build_authorization(requirements, payer_address, nonce=nonce)
    payload = sign_authorization(unsigned, signer)

    result = check_payload(requirements, payload)
    if not result.valid:
        raise VerificationFailure(f"Signed payload does not match requirements: {result.reason}", reason=result.reason)
    return payload
