# paygate/x402/challenge.py
"""
Challenge construction and local payload checks.

build_requirements turns a matched route into the PaymentRequirements
sent in a 402 body. check_payload compares a decoded payload against
those requirements before anything is sent to the facilitator.
"""
import logging
import re
from typing import Any, Optional, Union

from pydantic import ValidationError

from paygate.x402.errors import ConfigError
from paygate.x402.types import (
    SCHEME_EXACT,
    SUPPORTED_NETWORKS,
    InvalidReason,
    PaymentPayload,
    PaymentRequirements,
    VerifyResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TIMEOUT_SECONDS = 600
_DIGITS = re.compile(r"[0-9]+")


def parse_price(price: Union[str, int, Any]) -> int:
    """
    Parse a configured price into smallest ledger units.

    Accepts a positive int or a string of decimal digits ("10").
    Anything else, including floats and booleans, is a ConfigError.
    """
    if isinstance(price, bool):
        raise ConfigError(f"Price must be an integer amount, got {price!r}", reason="invalid price")
    if isinstance(price, int):
        amount = price
    elif isinstance(price, str) and _DIGITS.fullmatch(price.strip()):
        amount = int(price.strip())
    else:
        raise ConfigError(f"Price must be an integer amount, got {price!r}", reason="invalid price")

    if amount <= 0:
        raise ConfigError(f"Price must be greater than zero, got {price!r}", reason="invalid price")
    return amount


def validate_network(network: Any) -> str:
    if network not in SUPPORTED_NETWORKS:
        raise ConfigError(
            f"Unknown network {network!r}; expected one of {', '.join(SUPPORTED_NETWORKS)}",
            reason="invalid network",
        )
    return network


def build_requirements(
    route,
    resource_path: str,
    *,
    pay_to: str,
    max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS,
    now: Optional[int] = None,
) -> PaymentRequirements:
    """
    Create PaymentRequirements for a matched route.

    Args:
        route: The matched RouteRule (price, network, description)
        resource_path: Path of the requested resource
        pay_to: Recipient address
        max_timeout_seconds: How long the challenge stays payable
        now: Current unix time; when given, the requirements expire at
            ``now + max_timeout_seconds``

    Returns:
        PaymentRequirements for the 402 response

    Raises:
        ConfigError: If the route's price, network or recipient is malformed
    """
    amount = parse_price(route.price)
    network = validate_network(route.network)
    if not pay_to:
        raise ConfigError("Recipient address is not configured", reason="invalid recipient")

    try:
        return PaymentRequirements(
            scheme=SCHEME_EXACT,
            network=network,
            recipient=pay_to,
            amount=amount,
            resource=resource_path,
            description=route.description or "",
            max_timeout_seconds=max_timeout_seconds,
            expires_at=None if now is None else now + max_timeout_seconds,
        )
    except ValidationError as e:
        raise ConfigError(f"Cannot build payment requirements: {e}", reason="invalid route") from e


def check_payload(
    requirements: PaymentRequirements,
    payload: PaymentPayload,
    now: Optional[int] = None,
) -> VerifyResult:
    """
    Check that a payload mirrors the requirements it claims to satisfy.

    Mismatches are rejections, never adjusted. Signature and nonce checks
    belong to the facilitator.

    When the requirements carry an expiry, the payload must carry one too,
    no later than the seller's.
    """
    if payload.scheme != requirements.scheme:
        reason = InvalidReason.SCHEME_MISMATCH
    elif payload.network != requirements.network:
        reason = InvalidReason.WRONG_NETWORK
    elif payload.amount < requirements.amount:
        reason = InvalidReason.INSUFFICIENT_AMOUNT
    elif payload.amount != requirements.amount:
        reason = InvalidReason.AMOUNT_MISMATCH
    elif payload.recipient != requirements.recipient:
        reason = InvalidReason.RECIPIENT_MISMATCH
    elif payload.resource != requirements.resource:
        reason = InvalidReason.RESOURCE_MISMATCH
    elif requirements.expires_at is not None and (
        payload.expires_at is None or payload.expires_at > requirements.expires_at
    ):
        reason = InvalidReason.EXPIRED
    elif now is not None and payload.expires_at is not None and now > payload.expires_at:
        reason = InvalidReason.EXPIRED
    else:
        return VerifyResult(valid=True, payer=payload.payer)

    logger.warning(f"x402: Payload from {payload.payer} rejected locally: {reason}")
    return VerifyResult(valid=False, reason=reason, payer=payload.payer)
