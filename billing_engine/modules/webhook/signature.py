"""HMAC-SHA256 verification of webhook payloads.

The signature covers the raw request bytes exactly as received. The header
may carry the digest hex- or base64-encoded, optionally prefixed ``sha256=``.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import string
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
_DIGEST_SIZE = hashlib.sha256().digest_size
_HEX_DIGITS = frozenset(string.hexdigits)


def generate_signature(secret: str, payload: bytes) -> str:
    """Generate HMAC-SHA256 signature for a raw webhook payload."""
    signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{signature}"


def _decode_signature(signature: str) -> Optional[bytes]:
    value = signature.strip()
    if value.lower().startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]

    if len(value) == _DIGEST_SIZE * 2 and all(c in _HEX_DIGITS for c in value):
        return bytes.fromhex(value)

    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded if len(decoded) == _DIGEST_SIZE else None


class SignatureVerifier:
    """Verifies provider signatures against a shared secret."""

    def __init__(self, secret: str):
        self._secret = secret.encode() if secret else b""

    def verify(self, payload: bytes, signature: Optional[str]) -> bool:
        """Check a signature header against the payload.

        Comparison is constant-time. A missing secret rejects everything.
        """
        if not self._secret:
            logger.warning("Webhook signing secret not configured, rejecting delivery")
            return False
        if not signature:
            return False

        provided = _decode_signature(signature)
        if provided is None:
            return False

        expected = hmac.new(self._secret, payload, hashlib.sha256).digest()
        return hmac.compare_digest(expected, provided)
