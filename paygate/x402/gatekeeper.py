# paygate/x402/gatekeeper.py
"""
Seller-side payment gate.

PaymentGate.handle(request, call_next) is a plain async hook: it can be
wrapped by X402Middleware, passed to ``app.middleware("http")``, or
called directly. For each request it:

1. Looks the path up in the route table (no match: pass through)
2. Without an X-PAYMENT header, returns 402 with the requirements
3. Decodes the header and checks it against the requirements locally
4. Verifies the payload with the facilitator
5. Invokes the protected handler
6. Settles only after the handler succeeded, then attaches the
   settlement to the response as X-PAYMENT-RESPONSE

If settlement fails the handler's response is discarded and the buyer
gets a 402: the resource is served only when payment is both verified
and settled.
"""
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from paygate.x402.audit import AuditLog, generate_request_id
from paygate.x402.challenge import DEFAULT_MAX_TIMEOUT_SECONDS, build_requirements, check_payload
from paygate.x402.codec import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER, decode_payment_payload, encode_settle_result
from paygate.x402.errors import ConfigError, EncodingError, FacilitatorUnavailable, SettlementFailure
from paygate.x402.routes import RouteTable
from paygate.x402.types import (
    X402_VERSION,
    InvalidReason,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
)

logger = logging.getLogger(__name__)

X_VERIFICATION_TIME_HEADER = "X-Verification-Time"
X_SETTLEMENT_TIME_HEADER = "X-Settlement-Time"
RETRY_AFTER_SECONDS = 1

CallNext = Callable[[Request], Awaitable[Response]]


class GateState(Enum):
    """Terminal states of one gated request."""
    PASSTHROUGH = "passthrough"
    AWAITING_PAYMENT = "awaiting_payment"
    REJECTED = "rejected"
    FACILITATOR_UNAVAILABLE = "facilitator_unavailable"
    NOT_DELIVERED = "not_delivered"
    DELIVERED = "delivered"
    SETTLEMENT_FAILED = "settlement_failed"


def create_402_response(
    requirements: PaymentRequirements,
    error_message: str,
    reason: Optional[str] = None,
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        requirements: The payment requirements to include
        error_message: Human-readable error for the response
        reason: Machine-readable reason (omitted for a plain challenge)

    Returns:
        JSONResponse with 402 status and payment details
    """
    body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [requirements.model_dump(mode="json", by_alias=True)],
    }
    if reason is not None:
        body["reason"] = reason
    return JSONResponse(status_code=402, content=body)


def create_unavailable_response(error: FacilitatorUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"error": "Payment facilitator unavailable", "reason": error.reason},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


async def read_body(response: Response) -> bytes:
    """Drain a response body, streaming or not."""
    if hasattr(response, "body_iterator"):
        body = b""
        async for chunk in response.body_iterator:
            body += chunk if isinstance(chunk, bytes) else chunk.encode("utf-8")
        return body
    return response.body


class PaymentGate:
    """
    Gate protected routes behind x402 payments.

    Args:
        routes: Route table deciding which paths cost what
        facilitator: Object with blocking ``verify`` and ``settle`` methods
            (normally a FacilitatorClient)
        pay_to: Recipient address for every route
        max_timeout_seconds: How long an issued challenge stays payable
        audit: Optional audit log
        enabled: When False every request passes through
        clock: Source of unix time
    """

    def __init__(
        self,
        routes: RouteTable,
        facilitator,
        pay_to: str,
        *,
        max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS,
        audit: Optional[AuditLog] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if not pay_to:
            raise ConfigError("Recipient address must be configured", reason="invalid recipient")
        if max_timeout_seconds <= 0:
            raise ConfigError("Challenge timeout must be positive", reason="invalid timeout")
        self.routes = routes
        self.facilitator = facilitator
        self.pay_to = pay_to
        self.max_timeout_seconds = max_timeout_seconds
        self.audit = audit or AuditLog()
        self.enabled = enabled
        self._clock = clock

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        return await self.handle(request, call_next)

    async def handle(self, request: Request, call_next: CallNext) -> Response:
        """Run ``request`` through the payment state machine."""
        response, state = await self.process(request, call_next)
        logger.debug(f"x402: {request.method} {request.url.path} -> {state.value}")
        return response

    async def process(self, request: Request, call_next: CallNext):
        """Like handle, but also returns the terminal GateState."""
        if not self.enabled:
            return await call_next(request), GateState.PASSTHROUGH

        path = request.url.path
        route = self.routes.match(path, request.method)
        if route is None:
            return await call_next(request), GateState.PASSTHROUGH

        request_id = generate_request_id()
        now = int(self._clock())
        requirements = build_requirements(
            route,
            path,
            pay_to=self.pay_to,
            max_timeout_seconds=self.max_timeout_seconds,
            now=now,
        )

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No X-PAYMENT header for {path}, returning 402 for {requirements.amount}")
            self.audit.payment_required_sent(request_id, requirements)
            return (
                create_402_response(requirements, f"{X_PAYMENT_HEADER} header is required"),
                GateState.AWAITING_PAYMENT,
            )

        try:
            payload = decode_payment_payload(payment_header)
        except EncodingError as e:
            logger.warning(f"x402: Invalid X-PAYMENT header for {path}: {e}")
            self.audit.payment_rejected(request_id, e.reason, stage="decode")
            return (
                create_402_response(requirements, f"Invalid {X_PAYMENT_HEADER} header: {e.reason}", e.reason),
                GateState.REJECTED,
            )

        verify_started = time.perf_counter()
        verification = check_payload(requirements, payload, now=now)
        if verification.valid:
            # The facilitator checks against the expiry the buyer signed.
            requirements = requirements.model_copy(update={"expires_at": payload.expires_at})
            try:
                verification = await run_in_threadpool(self.facilitator.verify, requirements, payload)
            except FacilitatorUnavailable as e:
                logger.error(f"x402: Facilitator verification failed: {e}")
                self.audit.facilitator_unavailable(request_id, "verify", e.reason)
                return create_unavailable_response(e), GateState.FACILITATOR_UNAVAILABLE
        verify_ms = _elapsed_ms(verify_started)

        if not verification.valid:
            reason = verification.reason or "unknown reason"
            logger.warning(f"x402: Payment verification failed for {payload.payer}: {reason}")
            self.audit.payment_rejected(request_id, reason, stage="verify", payer=payload.payer)
            return (
                create_402_response(requirements, f"Payment verification failed: {reason}", reason),
                GateState.REJECTED,
            )

        logger.info(f"x402: Payment verified for payer {payload.payer}")
        self.audit.payment_verified(request_id, payload.payer, payload.nonce)

        response = await call_next(request)
        if not 200 <= response.status_code < 300:
            logger.warning(f"x402: Handler returned {response.status_code}, not settling payment")
            return response, GateState.NOT_DELIVERED

        body = await read_body(response)

        settle_started = time.perf_counter()
        try:
            settlement = await self._settle(requirements, payload)
        except SettlementFailure as e:
            logger.error(f"x402: Payment settlement failed, withholding resource: {e}")
            self.audit.settlement_failed(request_id, payload.payer, e.reason, e.unconfirmed)
            return (
                create_402_response(requirements, f"Payment settlement failed: {e.reason}", e.reason),
                GateState.SETTLEMENT_FAILED,
            )
        settle_ms = _elapsed_ms(settle_started)

        logger.info(f"x402: Payment settled successfully ({settlement.tx_hash})")
        self.audit.payment_settled(request_id, payload.payer, settlement)

        new_response = Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
        new_response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_settle_result(settlement)
        new_response.headers[X_VERIFICATION_TIME_HEADER] = str(verify_ms)
        new_response.headers[X_SETTLEMENT_TIME_HEADER] = str(settle_ms)
        return new_response, GateState.DELIVERED

    async def _settle(self, requirements: PaymentRequirements, payload: PaymentPayload) -> SettleResult:
        """
        Settle ``payload`` or raise SettlementFailure.

        A facilitator that cannot be reached leaves the ledger outcome
        unknown; that is reported as an unconfirmed settlement failure.
        """
        try:
            settlement = await run_in_threadpool(self.facilitator.settle, requirements, payload)
        except FacilitatorUnavailable as e:
            raise SettlementFailure(
                f"Settlement unconfirmed: {e}",
                reason=InvalidReason.SETTLEMENT_UNCONFIRMED,
                unconfirmed=True,
            ) from e

        if not settlement.success:
            raise SettlementFailure(
                f"Facilitator refused settlement: {settlement.error_reason}",
                reason=settlement.error_reason or "settlement failed",
            )
        return settlement


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
