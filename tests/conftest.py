# tests/conftest.py
"""
Shared fakes for the x402 tests.

FakeSigner signs with a sha256 digest of the canonical message.
FakeFacilitator checks that digest, enforces nonce uniqueness and
records every call, standing in for the external facilitator service.
"""
import hashlib
from typing import List, Set, Tuple

import pytest

from paygate.x402.challenge import check_payload
from paygate.x402.routes import RouteTable
from paygate.x402.types import (
    InvalidReason,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    UnsignedAuthorization,
    VerifyResult,
)

PAY_TO = "0xseller000000000000000000000000000000000000000000000000000000000a"
PAYER = "0xbuyer0000000000000000000000000000000000000000000000000000000000b"
WEATHER_PATH = "/api/protected/weather"


def fake_signature(unsigned: UnsignedAuthorization) -> str:
    return "0x" + hashlib.sha256(unsigned.signing_message()).hexdigest()


class FakeSigner:
    def __init__(self):
        self.signed: List[UnsignedAuthorization] = []

    def sign(self, unsigned: UnsignedAuthorization) -> PaymentPayload:
        self.signed.append(unsigned)
        return unsigned.with_signature(fake_signature(unsigned))


class FakeFacilitator:
    def __init__(self):
        self.used_nonces: Set[str] = set()
        self.verify_calls: List[Tuple[PaymentRequirements, PaymentPayload]] = []
        self.settle_calls: List[Tuple[PaymentRequirements, PaymentPayload]] = []
        self.tx_counter = 0

    def verify(self, requirements: PaymentRequirements, payload: PaymentPayload) -> VerifyResult:
        self.verify_calls.append((requirements, payload))
        if payload.signature != fake_signature(payload.unsigned()):
            return VerifyResult(valid=False, reason=InvalidReason.BAD_SIGNATURE)
        if payload.nonce in self.used_nonces:
            return VerifyResult(valid=False, reason=InvalidReason.ALREADY_USED)
        return check_payload(requirements, payload)

    def settle(self, requirements: PaymentRequirements, payload: PaymentPayload) -> SettleResult:
        self.settle_calls.append((requirements, payload))
        if payload.nonce in self.used_nonces:
            return SettleResult(success=False, network=requirements.network, error_reason=InvalidReason.ALREADY_USED)
        self.used_nonces.add(payload.nonce)
        self.tx_counter += 1
        return SettleResult(success=True, tx_hash=f"0xtx{self.tx_counter:04d}", network=requirements.network)


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def facilitator():
    return FakeFacilitator()


@pytest.fixture
def weather_routes():
    return RouteTable.from_mapping({
        WEATHER_PATH: {"price": "10", "network": "testnet", "description": "Weather data"},
    })
