# paygate/x402/buyer.py
"""
Buyer-side client that pays for x402-gated resources.

X402Client.request sends a request; on a 402 it reads the challenge,
signs exactly one payment for it and retries once with the X-PAYMENT
header. It never pays twice for one call: a second 402 ends the
exchange as FAILED with the seller's reason.

The HTTP transport is any object with a ``requests``-style
``request(method, url, headers=..., **kwargs)`` method: a
``requests.Session`` by default, or FastAPI's TestClient in tests.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import requests

from paygate.x402.codec import X_PAYMENT_HEADER, decode_payment_required, decode_payment_response, encode_payment_payload
from paygate.x402.errors import EncodingError, PaymentCancelled
from paygate.x402.payer import BalanceReader, Signer, build_payment
from paygate.x402.types import (
    InvalidReason,
    PaymentInfo,
    PaymentPayload,
    PaymentRequired,
    PaymentRequirements,
    SettleResult,
)

logger = logging.getLogger(__name__)

BALANCE_CHECK_FAILED = "balance check failed"


class BuyerState(Enum):
    SENT = "sent"
    CHALLENGED = "challenged"
    SIGNING = "signing"
    RETRY_SENT = "retry_sent"
    OK = "ok"
    FAILED = "failed"


@dataclass
class PaymentOutcome:
    """Result of one buyer exchange, paid or not."""
    state: BuyerState
    response: Any
    history: List[BuyerState] = field(default_factory=list)
    requirements: Optional[PaymentRequirements] = None
    payload: Optional[PaymentPayload] = None
    settlement: Optional[SettleResult] = None
    payment_info: Optional[PaymentInfo] = None
    reason: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.state is BuyerState.OK

    @property
    def payment_attempted(self) -> bool:
        return self.payload is not None


def response_reason(response) -> str:
    """Best machine-readable reason a seller gave for a non-2xx response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("reason", "error", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"HTTP {response.status_code}"


class X402Client:
    """
    Pay-per-request HTTP client.

    Args:
        signer: Signs payment authorizations
        payer_address: Address the payments are drawn from
        session: requests-compatible transport (default: new requests.Session)
        balance_reader: Optional; when given, balance is checked before signing
        networks: Optional allow-list of networks the buyer will pay on
    """

    def __init__(
        self,
        signer: Signer,
        payer_address: str,
        *,
        session=None,
        balance_reader: Optional[BalanceReader] = None,
        networks: Optional[Sequence[str]] = None,
    ):
        self.signer = signer
        self.payer_address = payer_address
        self.session = session if session is not None else requests.Session()
        self.balance_reader = balance_reader
        self.networks = tuple(networks) if networks else None

    def get(self, url: str, **kwargs) -> PaymentOutcome:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> PaymentOutcome:
        return self.request("POST", url, **kwargs)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
        **kwargs,
    ) -> PaymentOutcome:
        """
        Send a request, paying once if the seller asks for payment.

        Raises:
            EncodingError: If the 402 body is not a valid challenge
            BuyerSigningError: If the signer fails
            VerificationFailure: If the signed payload does not match the challenge
            PaymentCancelled: If ``cancel_event`` is set before the payment is sent
        """
        headers = dict(headers or {})
        _check_cancelled(cancel_event, "before sending")

        response = self.session.request(method, url, headers=headers, **kwargs)
        history = [BuyerState.SENT]
        if response.status_code != 402:
            return self._finish(response, history, paid=False)

        history.append(BuyerState.CHALLENGED)
        challenge = decode_payment_required(response.content)
        requirements = self.select_requirements(challenge)
        if requirements is None:
            logger.warning(f"x402: No acceptable payment option for {url}")
            history.append(BuyerState.FAILED)
            return PaymentOutcome(
                state=BuyerState.FAILED,
                response=response,
                history=history,
                reason="no acceptable payment requirements",
            )

        _check_cancelled(cancel_event, "before signing")
        if self.balance_reader is not None:
            reason, error = None, None
            try:
                balance = self.balance_reader.balance(self.payer_address)
            except Exception as e:
                logger.error(f"x402: Balance check for {self.payer_address} failed: {e}")
                reason, error = BALANCE_CHECK_FAILED, e
            else:
                if balance < requirements.amount:
                    logger.warning(f"x402: Balance {balance} below required {requirements.amount}, not paying")
                    reason = InvalidReason.INSUFFICIENT_BALANCE
            if reason is not None:
                history.append(BuyerState.FAILED)
                return PaymentOutcome(
                    state=BuyerState.FAILED,
                    response=response,
                    history=history,
                    requirements=requirements,
                    reason=reason,
                    error=error,
                )

        history.append(BuyerState.SIGNING)
        logger.info(f"x402: Paying {requirements.amount} on {requirements.network} for {requirements.resource}")
        payload = build_payment(requirements, self.payer_address, self.signer)

        _check_cancelled(cancel_event, "before retrying")
        retry_headers = {**headers, X_PAYMENT_HEADER: encode_payment_payload(payload)}
        history.append(BuyerState.RETRY_SENT)
        outcome = PaymentOutcome(
            state=BuyerState.FAILED,
            response=response,
            history=history,
            requirements=requirements,
            payload=payload,
        )
        try:
            retry = self.session.request(method, url, headers=retry_headers, **kwargs)
        except Exception as e:
            # The payment may already be consumed; report it instead of raising.
            logger.error(f"x402: Paid retry to {url} failed: {e}")
            history.append(BuyerState.FAILED)
            outcome.reason = f"retry request failed: {e}"
            outcome.error = e
            return outcome

        outcome.response = retry
        return self._finish(retry, history, paid=True, outcome=outcome)

    def select_requirements(self, challenge: PaymentRequired) -> Optional[PaymentRequirements]:
        """First offered requirement on a network this buyer pays on."""
        for requirements in challenge.accepts:
            if self.networks is None or requirements.network in self.networks:
                return requirements
        return None

    def _finish(
        self,
        response,
        history: List[BuyerState],
        paid: bool,
        outcome: Optional[PaymentOutcome] = None,
    ) -> PaymentOutcome:
        outcome = outcome or PaymentOutcome(state=BuyerState.FAILED, response=response, history=history)
        if 200 <= response.status_code < 300:
            outcome.state = BuyerState.OK
            if paid:
                self._attach_settlement(outcome, response)
        else:
            outcome.state = BuyerState.FAILED
            outcome.reason = response_reason(response)
            if paid:
                logger.warning(f"x402: Paid request failed with {response.status_code}: {outcome.reason}")
        history.append(outcome.state)
        return outcome

    @staticmethod
    def _attach_settlement(outcome: PaymentOutcome, response) -> None:
        try:
            settlement = decode_payment_response(response.headers)
        except EncodingError as e:
            # The resource was delivered; keep it and report the bad header.
            logger.warning(f"x402: Could not parse X-PAYMENT-RESPONSE header: {e}")
            outcome.error = e
            return
        if settlement is None:
            return
        outcome.settlement = settlement
        outcome.payment_info = PaymentInfo.from_settlement(outcome.requirements, settlement)
        logger.info(f"x402: Payment settled, transaction {settlement.tx_hash}")


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise PaymentCancelled(f"Request cancelled {stage}", reason="cancelled")
