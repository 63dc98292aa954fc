"""
HMAC signing and verification of webhook payloads.
"""

import hashlib
import hmac
import secrets
from typing import Mapping, Optional, Union

SIGNATURE_PREFIX = "sha256="

Payload = Union[str, bytes]


def _to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, bytes):
        return payload
    return payload.encode("utf-8")


class SignatureService:
    """Computes and checks ``sha256=<hex>`` signatures."""

    @staticmethod
    def generate_secret() -> str:
        """Generate a random 32-byte signing secret, hex encoded."""
        return secrets.token_hex(32)

    @staticmethod
    def sign(payload: Payload, secret: str) -> str:
        """Return the hex HMAC-SHA256 of ``payload`` keyed by ``secret``."""
        return hmac.new(
            secret.encode("utf-8"),
            _to_bytes(payload),
            hashlib.sha256
        ).hexdigest()

    @classmethod
    def header_value(cls, payload: Payload, secret: str) -> str:
        return f"{SIGNATURE_PREFIX}{cls.sign(payload, secret)}"

    @classmethod
    def verify(cls, payload: Payload, signature: Optional[str], secret: str) -> bool:
        """
        Check a signature in constant time.

        Accepts either the bare hex digest or the ``sha256=<hex>`` header form.
        Malformed or missing signatures verify as ``False``.
        """
        if not signature:
            return False
        if signature.startswith(SIGNATURE_PREFIX):
            signature = signature[len(SIGNATURE_PREFIX):]

        expected = cls.sign(payload, secret)
        try:
            return hmac.compare_digest(
                bytes.fromhex(signature),
                bytes.fromhex(expected),
            )
        except ValueError:
            return False

    @classmethod
    def verify_headers(
        cls,
        payload: Payload,
        headers: Mapping[str, str],
        secret: str,
        header_name: str = "X-Webhook-Signature",
    ) -> bool:
        """Verify a received request using its headers (case-insensitive lookup)."""
        wanted = header_name.lower()
        signature = next(
            (value for name, value in headers.items() if name.lower() == wanted),
            None,
        )
        return cls.verify(payload, signature, secret)
