"""Unit tests for vendor callback signature validation.

Tests the HMAC-SHA256 signature validation logic to ensure only authentic
callbacks are processed when a signing secret is configured.
"""

import hashlib
import hmac

import pytest

from lumen.services.callback_signature import (
    compute_callback_signature,
    validate_callback_signature,
)


class TestCallbackSignatureValidation:
    """Test suite for HMAC signature validation."""

    @pytest.fixture
    def signing_secret(self) -> str:
        return "test_callback_secret"

    @pytest.fixture
    def sample_payload(self) -> bytes:
        return b'{"task_id":"task-1","status":"success","image_url":"https://cdn/1.png"}'

    @pytest.fixture
    def valid_signature(self, sample_payload: bytes, signing_secret: str) -> str:
        return hmac.new(
            key=signing_secret.encode("utf-8"), msg=sample_payload, digestmod=hashlib.sha256
        ).hexdigest()

    def test_compute_matches_reference_hmac(self, sample_payload, signing_secret, valid_signature):
        assert compute_callback_signature(sample_payload, signing_secret) == valid_signature

    def test_valid_signature_acceptance(self, sample_payload, signing_secret, valid_signature):
        assert validate_callback_signature(sample_payload, valid_signature, signing_secret) is True

    def test_signature_is_case_and_whitespace_tolerant(
        self, sample_payload, signing_secret, valid_signature
    ):
        assert validate_callback_signature(
            sample_payload, f" {valid_signature.upper()} ", signing_secret
        )

    def test_invalid_signature_rejection(self, sample_payload, signing_secret):
        assert validate_callback_signature(sample_payload, "0" * 64, signing_secret) is False

    def test_modified_payload_rejection(self, sample_payload, signing_secret, valid_signature):
        tampered = sample_payload.replace(b"success", b"failed")
        assert validate_callback_signature(tampered, valid_signature, signing_secret) is False

    def test_wrong_secret_rejection(self, sample_payload, valid_signature):
        assert validate_callback_signature(sample_payload, valid_signature, "other") is False
