"""
Webhook Signature Verification

GitHub sends:  X-Hub-Signature-256: sha256=<hex_digest>
We compute:    sha256=HMAC-SHA256(secret, raw_body)

The digest must be computed over the request body bytes exactly as received.
Hashing a re-serialized JSON document breaks valid signatures (key order,
whitespace) and is never done here.
"""

import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(payload: bytes, secret: str) -> str:
    """Return the `sha256=<hex>` signature GitHub would send for payload."""
    digest = hmac.new(
        key=_to_bytes(secret),
        msg=payload,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(
    payload: Optional[bytes],
    signature_header: Optional[str],
    secret: Optional[str],
) -> bool:
    """
    Verify a webhook body against a shared secret.

    Fails closed: an empty payload, header or secret is never valid.

    Args:
        payload: Raw request body bytes
        signature_header: Value of the X-Hub-Signature-256 header
        secret: The project's webhook secret

    Returns:
        True only if the header equals sha256=HMAC-SHA256(secret, payload)
    """
    if not payload or not signature_header or not secret:
        return False

    expected = _to_bytes(sign_payload(payload, secret))
    received = _to_bytes(signature_header)

    # Length is public (sha256= + 64 hex chars); only the bytes are secret-derived.
    if len(received) != len(expected):
        return False

    return hmac.compare_digest(expected, received)
