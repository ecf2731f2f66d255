# paygate/x402/__init__.py
"""
x402 Payment Protocol engine.

This package implements HTTP 402 pay-per-request access for both sides
of the handshake.

Key components:
- types: wire models (requirements, payloads, verify/settle results)
- codec: X-PAYMENT / X-PAYMENT-RESPONSE header encoding
- routes: ordered route table (first match wins)
- challenge: 402 requirements and local payload checks
- facilitator: verify/settle client for the external facilitator
- gatekeeper, middleware: seller-side gate and its FastAPI adapter
- payer, buyer: buyer-side payment construction and retry orchestration
- audit: JSON-lines audit trail

Configuration is built by the host application (see paygate.main) and
passed in; nothing in this package reads the environment.
"""
from paygate.core.version import VERSION
from paygate.x402.buyer import BuyerState, PaymentOutcome, X402Client
from paygate.x402.codec import (
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_payload,
    decode_payment_response,
    decode_settle_result,
    encode_payment_payload,
    encode_settle_result,
)
from paygate.x402.errors import (
    BuyerSigningError,
    ConfigError,
    EncodingError,
    FacilitatorUnavailable,
    PaymentCancelled,
    SettlementFailure,
    VerificationFailure,
    X402Error,
)
from paygate.x402.facilitator import FacilitatorClient, FacilitatorConfig
from paygate.x402.gatekeeper import GateState, PaymentGate
from paygate.x402.middleware import X402Middleware
from paygate.x402.routes import RouteRule, RouteTable
from paygate.x402.types import (
    PaymentInfo,
    PaymentPayload,
    PaymentRequired,
    PaymentRequirements,
    SettleResult,
    UnsignedAuthorization,
    VerifyResult,
)

__version__ = VERSION
