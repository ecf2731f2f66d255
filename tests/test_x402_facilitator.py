# tests/test_x402_facilitator.py
"""
Unit tests for the facilitator client.
"""
from unittest.mock import MagicMock

import pytest
import requests

from paygate.x402.codec import decode_payment_payload
from paygate.x402.errors import ConfigError, FacilitatorUnavailable
from paygate.x402.facilitator import FacilitatorClient, FacilitatorConfig
from paygate.x402.types import PaymentPayload, PaymentRequirements

FACILITATOR_URL = "https://facilitator.example.com/api/facilitator/"


def make_requirements() -> PaymentRequirements:
    return PaymentRequirements(
        network="testnet", recipient="0xseller", amount=10, resource="/api/protected/weather"
    )


def make_payload() -> PaymentPayload:
    return PaymentPayload(
        network="testnet",
        recipient="0xseller",
        amount=10,
        resource="/api/protected/weather",
        payer="0xbuyer",
        nonce="0xabc",
        signature="0xsig",
    )


def mock_response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    return response


def make_client(*responses, **config_overrides):
    session = MagicMock(spec=requests.Session)
    session.post.side_effect = list(responses)
    config = FacilitatorConfig(url=FACILITATOR_URL, **config_overrides)
    return FacilitatorClient(config, session=session), session


class TestFacilitatorConfig:
    """Test facilitator configuration validation."""

    def test_valid(self):
        config = FacilitatorConfig(url=FACILITATOR_URL)
        assert config.base_url == "https://facilitator.example.com/api/facilitator"

    def test_requires_http_url(self):
        with pytest.raises(ConfigError):
            FacilitatorConfig(url="ftp://facilitator")

    def test_at_most_one_retry(self):
        with pytest.raises(ConfigError):
            FacilitatorConfig(url=FACILITATOR_URL, max_retries=3)

    def test_positive_timeout(self):
        with pytest.raises(ConfigError):
            FacilitatorConfig(url=FACILITATOR_URL, timeout_seconds=0)


class TestVerify:
    """Test the verify call."""

    def test_valid_result(self):
        """A positive answer is parsed into VerifyResult."""
        client, session = make_client(mock_response(json_data={"valid": True, "payer": "0xbuyer"}))
        result = client.verify(make_requirements(), make_payload())
        assert result.valid is True
        assert result.payer == "0xbuyer"

    def test_request_shape(self):
        """verify posts the payload and requirements to {url}/verify with a timeout."""
        client, session = make_client(mock_response(json_data={"valid": True}), timeout_seconds=3)
        client.verify(make_requirements(), make_payload())

        args, kwargs = session.post.call_args
        assert args[0] == "https://facilitator.example.com/api/facilitator/verify"
        assert kwargs["timeout"] == 3
        body = kwargs["json"]
        assert body["x402Version"] == 1
        assert body["paymentRequirements"]["amount"] == 10
        assert body["paymentPayload"]["nonce"] == "0xabc"
        assert decode_payment_payload(body["paymentHeader"]) == make_payload()

    def test_negative_result_not_retried(self):
        """A rejection is a protocol answer: returned once, never retried."""
        client, session = make_client(
            mock_response(json_data={"valid": False, "reason": "insufficient amount"}),
            mock_response(json_data={"valid": True}),
        )
        result = client.verify(make_requirements(), make_payload())
        assert result.valid is False
        assert result.reason == "insufficient amount"
        assert session.post.call_count == 1

    def test_4xx_with_result_body_is_rejection(self):
        """A 400 carrying a verify result is still a protocol answer."""
        client, session = make_client(
            mock_response(status_code=400, json_data={"valid": False, "reason": "bad signature"})
        )
        result = client.verify(make_requirements(), make_payload())
        assert result.reason == "bad signature"

    def test_timeout_retried_once(self):
        """A timeout gets exactly one more attempt."""
        client, session = make_client(
            requests.exceptions.Timeout("slow"),
            mock_response(json_data={"valid": True}),
        )
        assert client.verify(make_requirements(), make_payload()).valid is True
        assert session.post.call_count == 2

    def test_timeout_twice_raises(self):
        """Two transport failures raise FacilitatorUnavailable."""
        client, session = make_client(
            requests.exceptions.Timeout("slow"),
            requests.exceptions.Timeout("still slow"),
            mock_response(json_data={"valid": True}),
        )
        with pytest.raises(FacilitatorUnavailable) as exc_info:
            client.verify(make_requirements(), make_payload())
        assert exc_info.value.reason == "timeout"
        assert session.post.call_count == 2

    def test_no_retry_when_disabled(self):
        client, session = make_client(
            requests.exceptions.ConnectionError("refused"),
            mock_response(json_data={"valid": True}),
            max_retries=0,
        )
        with pytest.raises(FacilitatorUnavailable) as exc_info:
            client.verify(make_requirements(), make_payload())
        assert exc_info.value.reason == "connection error"
        assert session.post.call_count == 1

    def test_server_error_retried(self):
        """5xx is treated as unavailability."""
        client, session = make_client(
            mock_response(status_code=502, text="Bad Gateway"),
            mock_response(json_data={"valid": True}),
        )
        assert client.verify(make_requirements(), make_payload()).valid is True
        assert session.post.call_count == 2

    def test_malformed_body_not_retried(self):
        """Non-JSON bodies fail immediately."""
        client, session = make_client(
            mock_response(status_code=200, json_data=None, text="<html>"),
            mock_response(json_data={"valid": True}),
        )
        with pytest.raises(FacilitatorUnavailable) as exc_info:
            client.verify(make_requirements(), make_payload())
        assert exc_info.value.reason == "malformed response"
        assert session.post.call_count == 1

    def test_loose_types_rejected(self):
        """'valid': 'true' is not coerced into a boolean."""
        client, _ = make_client(mock_response(json_data={"valid": "true"}))
        with pytest.raises(FacilitatorUnavailable):
            client.verify(make_requirements(), make_payload())

    def test_in_flight_limit(self):
        """Calls beyond the in-flight cap fail as busy."""
        client, session = make_client(mock_response(json_data={"valid": True}), max_in_flight=1, timeout_seconds=0.01)
        client._slots.acquire()
        try:
            with pytest.raises(FacilitatorUnavailable) as exc_info:
                client.verify(make_requirements(), make_payload())
            assert exc_info.value.reason == "busy"
            session.post.assert_not_called()
        finally:
            client._slots.release()


class TestSettle:
    """Test the settle call."""

    def test_success(self):
        client, session = make_client(
            mock_response(json_data={"success": True, "txHash": "0xtx", "network": "testnet"})
        )
        result = client.settle(make_requirements(), make_payload())
        assert result.success is True
        assert result.tx_hash == "0xtx"
        assert session.post.call_args[0][0].endswith("/settle")

    def test_network_defaults_to_requirements(self):
        """A facilitator that omits network gets the requirements' network."""
        client, _ = make_client(mock_response(json_data={"success": True, "txHash": "0xtx"}))
        assert client.settle(make_requirements(), make_payload()).network == "testnet"

    def test_failure_returned_not_retried(self):
        client, session = make_client(
            mock_response(json_data={"success": False, "network": "testnet", "errorReason": "already used"}),
        )
        result = client.settle(make_requirements(), make_payload())
        assert result.success is False
        assert result.error_reason == "already used"
        assert session.post.call_count == 1

    def test_retry_resends_same_nonce(self):
        """A settlement retry is the same payment, not a new one."""
        client, session = make_client(
            requests.exceptions.ConnectionError("reset"),
            mock_response(json_data={"success": True, "txHash": "0xtx", "network": "testnet"}),
        )
        client.settle(make_requirements(), make_payload())
        first, second = session.post.call_args_list
        assert first.kwargs["json"] == second.kwargs["json"]
