# paygate/x402/facilitator.py
"""
HTTP client for the x402 facilitator.

The facilitator exposes two endpoints under its base URL:

- ``POST {url}/verify`` -> ``{"valid": bool, "reason"?: str, "payer"?: str}``
- ``POST {url}/settle`` -> ``{"success": bool, "txHash"?: str, "network": str, "errorReason"?: str}``

Both receive ``{"x402Version", "paymentHeader", "paymentPayload",
"paymentRequirements"}``.

Transport failures (connection errors, timeouts, 5xx) raise
FacilitatorUnavailable and get at most one more attempt. A negative
VerifyResult or SettleResult is a protocol answer and is returned as-is,
never retried. Retrying a settlement resends the same payload and nonce,
so the facilitator sees a duplicate rather than a second payment.
"""
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar

import requests
from pydantic import ValidationError
from requests.exceptions import ConnectionError, RequestException, Timeout

from paygate.x402.codec import encode_payment_payload
from paygate.x402.errors import ConfigError, FacilitatorUnavailable
from paygate.x402.types import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
    WireModel,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=WireModel)

# Reasons worth a second attempt; anything else fails immediately.
RETRYABLE_REASONS = {"timeout", "connection error", "server error"}


@dataclass(frozen=True)
class FacilitatorConfig:
    """Facilitator endpoint and the policy for talking to it."""
    url: str
    timeout_seconds: float = 10.0
    max_retries: int = 1
    max_in_flight: int = 16

    def __post_init__(self):
        if not self.url or not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Facilitator URL must be http(s), got {self.url!r}", reason="invalid facilitator url")
        if self.timeout_seconds <= 0:
            raise ConfigError("Facilitator timeout must be positive", reason="invalid facilitator timeout")
        if self.max_retries not in (0, 1):
            raise ConfigError("Facilitator retries must be 0 or 1", reason="invalid facilitator retries")
        if self.max_in_flight < 1:
            raise ConfigError("Facilitator in-flight limit must be at least 1", reason="invalid facilitator limit")

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")


class FacilitatorClient:
    """
    Blocking client for the facilitator's verify and settle endpoints.

    One instance is shared by all requests. It holds a pooled
    ``requests.Session`` and a semaphore capping concurrent calls.
    """

    def __init__(self, config: FacilitatorConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self._slots = threading.BoundedSemaphore(config.max_in_flight)

    def verify(self, requirements: PaymentRequirements, payload: PaymentPayload) -> VerifyResult:
        """
        Ask the facilitator whether ``payload`` satisfies ``requirements``.

        Raises:
            FacilitatorUnavailable: On transport failure after the retry budget
        """
        data = self._call("verify", requirements, payload)
        return self._parse(data, VerifyResult, "verify")

    def settle(self, requirements: PaymentRequirements, payload: PaymentPayload) -> SettleResult:
        """
        Ask the facilitator to execute the payment on the ledger.

        Raises:
            FacilitatorUnavailable: On transport failure after the retry budget
        """
        data = self._call("settle", requirements, payload)
        data.setdefault("network", requirements.network)
        return self._parse(data, SettleResult, "settle")

    def close(self) -> None:
        self.session.close()

    def _call(
        self,
        operation: str,
        requirements: PaymentRequirements,
        payload: PaymentPayload,
    ) -> Dict[str, Any]:
        url = f"{self.config.base_url}/{operation}"
        body = {
            "x402Version": X402_VERSION,
            "paymentHeader": encode_payment_payload(payload),
            "paymentPayload": payload.model_dump(mode="json", by_alias=True),
            "paymentRequirements": requirements.model_dump(mode="json", by_alias=True),
        }

        if not self._slots.acquire(timeout=self.config.timeout_seconds):
            raise FacilitatorUnavailable(
                f"Too many in-flight facilitator calls (limit {self.config.max_in_flight})",
                reason="busy",
            )
        try:
            attempts = 1 + self.config.max_retries
            for attempt in range(1, attempts + 1):
                try:
                    logger.info(f"x402: Submitting payment to facilitator {operation} ({url}), attempt {attempt}")
                    return self._post_once(url, body)
                except FacilitatorUnavailable as e:
                    if e.reason not in RETRYABLE_REASONS or attempt == attempts:
                        logger.error(f"x402: Facilitator {operation} failed: {e}")
                        raise
                    logger.warning(f"x402: Facilitator {operation} attempt {attempt} failed ({e}), retrying")
        finally:
            self._slots.release()
        raise AssertionError("unreachable")

    def _post_once(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(url, json=body, timeout=self.config.timeout_seconds)
        except Timeout as e:
            raise FacilitatorUnavailable(f"Facilitator timed out ({url}): {e}", reason="timeout") from e
        except ConnectionError as e:
            raise FacilitatorUnavailable(f"Cannot reach facilitator ({url}): {e}", reason="connection error") from e
        except RequestException as e:
            raise FacilitatorUnavailable(f"Facilitator request failed ({url}): {e}", reason="request error") from e

        if response.status_code >= 500:
            raise FacilitatorUnavailable(
                f"Facilitator responded with {response.status_code}: {response.text}",
                reason="server error",
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise FacilitatorUnavailable(
                f"Failed to parse JSON from facilitator at {url} ({response.status_code}): {response.text}",
                reason="malformed response",
            ) from e

        if not isinstance(data, dict):
            raise FacilitatorUnavailable(
                f"Facilitator returned {type(data).__name__}, expected an object",
                reason="malformed response",
            )
        return data

    @staticmethod
    def _parse(data: Dict[str, Any], result_type: Type[R], operation: str) -> R:
        try:
            return result_type.model_validate(data)
        except ValidationError as e:
            raise FacilitatorUnavailable(
                f"Facilitator {operation} response is malformed: {e.error_count()} error(s)",
                reason="malformed response",
            ) from e
