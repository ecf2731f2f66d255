# paygate/x402/types.py
"""
Wire types for the x402 payment protocol.

All models are immutable and validated in strict mode: an amount that
arrives as ``"10"`` or ``10.0`` is rejected rather than coerced. Field
names are snake_case in Python and camelCase on the wire.
"""
import json
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

X402_VERSION = 1
SCHEME_EXACT = "exact"

Network = Literal["mainnet", "testnet", "devnet"]
SUPPORTED_NETWORKS = get_args(Network)


class InvalidReason:
    """Machine-readable rejection reasons shared by seller, facilitator and buyer."""
    INSUFFICIENT_AMOUNT = "insufficient amount"
    AMOUNT_MISMATCH = "amount mismatch"
    WRONG_NETWORK = "wrong network"
    RECIPIENT_MISMATCH = "recipient mismatch"
    RESOURCE_MISMATCH = "resource mismatch"
    SCHEME_MISMATCH = "scheme mismatch"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad signature"
    ALREADY_USED = "already used"
    INVALID_PAYLOAD = "invalid payload"
    SETTLEMENT_UNCONFIRMED = "settlement unconfirmed"
    INSUFFICIENT_BALANCE = "insufficient balance"


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        strict=True,
        extra="forbid",
    )


class PaymentRequirements(WireModel):
    """What a seller accepts for one gated resource. Built fresh per request."""
    scheme: Literal["exact"] = SCHEME_EXACT
    network: Network
    recipient: str = Field(..., min_length=1, description="Address that receives the payment.")
    amount: int = Field(..., gt=0, description="Price in the smallest ledger unit.")
    resource: str = Field(..., min_length=1, description="Path of the gated resource.")
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = Field(600, gt=0)
    expires_at: Optional[int] = Field(None, description="Unix time after which a payment is refused.")


class UnsignedAuthorization(WireModel):
    """A payment authorization mirroring a PaymentRequirements, awaiting a signature."""
    x402_version: Literal[1] = X402_VERSION
    scheme: Literal["exact"] = SCHEME_EXACT
    network: Network
    recipient: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    resource: str = Field(..., min_length=1)
    payer: str = Field(..., min_length=1)
    nonce: str = Field(..., min_length=1)
    expires_at: Optional[int] = None

    def signing_message(self) -> bytes:
        """Canonical bytes a signer should sign."""
        body = self.model_dump(mode="json", by_alias=True)
        return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")

    def with_signature(self, signature: str) -> "PaymentPayload":
        return PaymentPayload(signature=signature, **self.model_dump())


class PaymentPayload(UnsignedAuthorization):
    """A signed authorization carried in the X-PAYMENT header. Consumed once."""
    signature: str = Field(..., min_length=1)

    def unsigned(self) -> UnsignedAuthorization:
        return UnsignedAuthorization(**self.model_dump(exclude={"signature"}))


class VerifyResult(WireModel):
    model_config = ConfigDict(extra="ignore")

    valid: bool
    reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResult(WireModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    tx_hash: Optional[str] = None
    network: Network
    error_reason: Optional[str] = None


class PaymentRequired(WireModel):
    """Body of a 402 response."""
    model_config = ConfigDict(extra="ignore")

    x402_version: Literal[1] = X402_VERSION
    error: str = ""
    accepts: List[PaymentRequirements] = Field(..., min_length=1)


class PaymentInfo(WireModel):
    """Buyer-facing summary of one completed, paid exchange."""
    tx_hash: Optional[str] = None
    amount: int
    recipient: str
    network: Network
    settled: bool

    @classmethod
    def from_settlement(
        cls, requirements: PaymentRequirements, settlement: SettleResult
    ) -> "PaymentInfo":
        return cls(
            tx_hash=settlement.tx_hash,
            amount=requirements.amount,
            recipient=requirements.recipient,
            network=settlement.network,
            settled=settlement.success,
        )
