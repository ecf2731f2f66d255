# tests/test_x402_payer.py
"""
Unit tests for buyer-side payment construction.
"""
from unittest.mock import MagicMock, patch

import pytest

from paygate.x402.errors import BuyerSigningError, VerificationFailure
from paygate.x402.payer import (
    BalanceReader,
    Signer,
    build_authorization,
    build_payment,
    generate_nonce,
    sign_authorization,
)
from paygate.x402.types import InvalidReason, PaymentPayload, PaymentRequirements, VerifyResult

from conftest import PAYER, FakeSigner, fake_signature

REQUIREMENTS = PaymentRequirements(
    network="testnet",
    recipient="0xseller",
    amount=10,
    resource="/api/protected/weather",
    expires_at=1_700_000_600,
)


class TestBuildAuthorization:
    """Test unsigned authorization construction."""

    def test_mirrors_requirements(self):
        """Every requirement field is copied exactly."""
        unsigned = build_authorization(REQUIREMENTS, PAYER)
        assert unsigned.scheme == REQUIREMENTS.scheme
        assert unsigned.network == REQUIREMENTS.network
        assert unsigned.recipient == REQUIREMENTS.recipient
        assert unsigned.amount == REQUIREMENTS.amount
        assert unsigned.resource == REQUIREMENTS.resource
        assert unsigned.expires_at == REQUIREMENTS.expires_at
        assert unsigned.payer == PAYER

    def test_fresh_nonce_each_time(self):
        """Each authorization gets its own nonce."""
        nonces = {build_authorization(REQUIREMENTS, PAYER).nonce for _ in range(50)}
        assert len(nonces) == 50

    def test_nonce_format(self):
        nonce = generate_nonce()
        assert nonce.startswith("0x")
        assert len(nonce) == 66

    def test_explicit_nonce(self):
        assert build_authorization(REQUIREMENTS, PAYER, nonce="0x01").nonce == "0x01"

    def test_signing_message_is_canonical(self):
        """Equal authorizations produce identical signing bytes."""
        a = build_authorization(REQUIREMENTS, PAYER, nonce="0x01")
        b = build_authorization(REQUIREMENTS, PAYER, nonce="0x01")
        assert a.signing_message() == b.signing_message()
        assert b'"amount":10' in a.signing_message()


class TestSignAuthorization:
    """Test signer delegation."""

    def test_fake_signer_satisfies_protocol(self):
        assert isinstance(FakeSigner(), Signer)

    def test_signs(self):
        unsigned = build_authorization(REQUIREMENTS, PAYER)
        payload = sign_authorization(unsigned, FakeSigner())
        assert isinstance(payload, PaymentPayload)
        assert payload.signature == fake_signature(unsigned)
        assert payload.unsigned() == unsigned

    def test_signer_exception_wrapped(self):
        """Any signer failure surfaces as BuyerSigningError."""
        signer = MagicMock()
        signer.sign.side_effect = RuntimeError("hardware wallet unplugged")
        with pytest.raises(BuyerSigningError) as exc_info:
            sign_authorization(build_authorization(REQUIREMENTS, PAYER), signer)
        assert "hardware wallet unplugged" in str(exc_info.value)

    def test_signer_wrong_type(self):
        signer = MagicMock()
        signer.sign.return_value = {"signature": "0xsig"}
        with pytest.raises(BuyerSigningError):
            sign_authorization(build_authorization(REQUIREMENTS, PAYER), signer)

    def test_signer_altering_authorization(self):
        """A signer may not change what it signs."""
        unsigned = build_authorization(REQUIREMENTS, PAYER)
        tampered = unsigned.model_copy(update={"amount": 1}).with_signature("0xsig")
        signer = MagicMock()
        signer.sign.return_value = tampered
        with pytest.raises(BuyerSigningError):
            sign_authorization(unsigned, signer)


class TestBuildPayment:
    """Test the full build-and-sign step."""

    def test_payload_matches_requirements(self):
        payload = build_payment(REQUIREMENTS, PAYER, FakeSigner())
        assert payload.amount == REQUIREMENTS.amount
        assert payload.resource == REQUIREMENTS.resource
        assert payload.network == REQUIREMENTS.network
        assert payload.recipient == REQUIREMENTS.recipient

    def test_signs_exactly_once(self):
        signer = FakeSigner()
        build_payment(REQUIREMENTS, PAYER, signer)
        assert len(signer.signed) == 1

    def test_self_check_failure(self):
        """A payload that would be rejected is never returned."""
        rejected = VerifyResult(valid=False, reason=InvalidReason.AMOUNT_MISMATCH)
        with patch("paygate.x402.payer.check_payload", return_value=rejected):
            with pytest.raises(VerificationFailure) as exc_info:
                build_payment(REQUIREMENTS, PAYER, FakeSigner())
        assert exc_info.value.reason == InvalidReason.AMOUNT_MISMATCH


class TestBalanceReaderProtocol:
    """Test the balance capability shape."""

    def test_runtime_checkable(self):
        class Reader:
            def balance(self, address: str) -> int:
                return 100

        assert isinstance(Reader(), BalanceReader)
