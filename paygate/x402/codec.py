# paygate/x402/codec.py
"""
Header wire format for payment payloads and settlement results.

A header value is base64 (standard alphabet, padded) over compact UTF-8
JSON with camelCase keys. Decoding is strict and fails closed: any
missing field, unknown payload field, wrong type or bad base64 raises
EncodingError.
"""
import base64
import binascii
import json
import logging
from typing import Mapping, Optional, Type, TypeVar

from pydantic import ValidationError

from paygate.x402.errors import EncodingError
from paygate.x402.types import PaymentPayload, PaymentRequired, SettleResult, WireModel

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# Upper bound on an encoded header value; well below common proxy limits.
MAX_HEADER_LENGTH = 8192

M = TypeVar("M", bound=WireModel)


def encode_model(model: WireModel) -> str:
    body = json.dumps(model.model_dump(mode="json", by_alias=True), separators=(",", ":"))
    return base64.b64encode(body.encode("utf-8")).decode("ascii")


def decode_model(header_value: Optional[str], model_type: Type[M]) -> M:
    """
    Decode a base64/JSON header value into ``model_type``.

    Raises:
        EncodingError: If the value is empty, oversized, not base64,
            not UTF-8 JSON, or does not validate against the model.
    """
    name = model_type.__name__
    if not header_value:
        raise EncodingError(f"Empty {name} header", reason="missing header")
    if len(header_value) > MAX_HEADER_LENGTH:
        raise EncodingError(f"{name} header exceeds {MAX_HEADER_LENGTH} bytes", reason="header too large")

    try:
        raw = base64.b64decode(header_value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"{name} header is not valid base64: {e}", reason="invalid base64") from e

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingError(f"{name} header is not UTF-8: {e}", reason="invalid utf-8") from e

    try:
        return model_type.model_validate_json(text)
    except ValidationError as e:
        logger.debug(f"Rejected {name} header: {e}")
        raise EncodingError(
            f"{name} header failed validation: {e.error_count()} error(s)",
            reason="invalid json" if _is_json_error(e) else "invalid fields",
        ) from e


def _is_json_error(error: ValidationError) -> bool:
    return any(item["type"] == "json_invalid" for item in error.errors())


def encode_payment_payload(payload: PaymentPayload) -> str:
    """Encode a payload for the X-PAYMENT request header."""
    return encode_model(payload)


def decode_payment_payload(header_value: Optional[str]) -> PaymentPayload:
    """Decode the X-PAYMENT request header."""
    return decode_model(header_value, PaymentPayload)


def encode_settle_result(result: SettleResult) -> str:
    """Encode a settlement result for the X-PAYMENT-RESPONSE header."""
    return encode_model(result)


def decode_settle_result(header_value: Optional[str]) -> SettleResult:
    """Decode the X-PAYMENT-RESPONSE header."""
    return decode_model(header_value, SettleResult)


def decode_payment_response(headers: Mapping[str, str]) -> Optional[SettleResult]:
    """
    Return the settlement carried in a response's headers, if any.

    Header lookup is delegated to ``headers.get`` so case-insensitive
    mappings (requests, httpx, starlette) work as expected.
    """
    value = headers.get(X_PAYMENT_RESPONSE_HEADER)
    if value is None:
        return None
    return decode_settle_result(value)


def decode_payment_required(body: bytes) -> PaymentRequired:
    """
    Parse a 402 response body into the challenge it carries.

    Raises:
        EncodingError: If the body is not a valid challenge.
    """
    try:
        return PaymentRequired.model_validate_json(body)
    except ValidationError as e:
        raise EncodingError(
            f"402 body is not a valid payment challenge: {e.error_count()} error(s)",
            reason="invalid challenge",
        ) from e
