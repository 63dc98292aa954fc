"""
Unit tests for webhook payload signing.
"""

import pytest

from webhook_events.core.webhooks.signature import SIGNATURE_PREFIX, SignatureService


@pytest.mark.unit
class TestSignatureService:
    """Test suite for SignatureService."""

    def test_sign_matches_known_hmac_sha256(self):
        """Test signing against a published HMAC-SHA256 vector."""
        signature = SignatureService.sign("The quick brown fox jumps over the lazy dog", "key")
        assert signature == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"

    def test_sign_accepts_str_and_bytes(self):
        assert SignatureService.sign("payload", "secret") == SignatureService.sign(b"payload", "secret")

    def test_header_value_has_prefix(self):
        value = SignatureService.header_value('{"a":1}', "secret")
        assert value.startswith(SIGNATURE_PREFIX)
        assert value[len(SIGNATURE_PREFIX):] == SignatureService.sign('{"a":1}', "secret")

    def test_verify_round_trip(self):
        body = b'{"id":"evt_1","type":"booking.created"}'
        signature = SignatureService.sign(body, "secret")

        assert SignatureService.verify(body, signature, "secret") is True
        assert SignatureService.verify(body, f"sha256={signature}", "secret") is True

    def test_verify_detects_single_byte_mutation(self):
        body = b'{"id":"evt_1","amount":100}'
        signature = SignatureService.sign(body, "secret")
        mutated = body.replace(b"100", b"101")

        assert SignatureService.verify(mutated, signature, "secret") is False

    def test_verify_rejects_wrong_secret(self):
        signature = SignatureService.sign("body", "secret")
        assert SignatureService.verify("body", signature, "other-secret") is False

    @pytest.mark.parametrize("signature", ["", None, "sha256=", "not-hex", "sha256=zz", "abc"])
    def test_verify_malformed_signature_returns_false(self, signature):
        assert SignatureService.verify("body", signature, "secret") is False

    def test_verify_headers_case_insensitive(self):
        body = '{"ping":true}'
        headers = {"x-webhook-signature": SignatureService.header_value(body, "secret")}

        assert SignatureService.verify_headers(body, headers, "secret") is True

    def test_verify_headers_custom_header_name(self):
        body = '{"ping":true}'
        headers = {"X-Signature": SignatureService.header_value(body, "secret")}

        assert SignatureService.verify_headers(body, headers, "secret", header_name="X-Signature") is True
        assert SignatureService.verify_headers(body, headers, "secret") is False

    def test_generate_secret(self):
        first = SignatureService.generate_secret()
        second = SignatureService.generate_secret()

        assert len(first) == 64
        int(first, 16)
        assert first != second
