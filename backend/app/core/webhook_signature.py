"""
Standard Webhooks signature verification.

Both the payment provider and the training provider sign deliveries the same
way: ``webhook-id``, ``webhook-timestamp`` and ``webhook-signature`` headers,
with the signature computed as base64(HMAC-SHA256(secret, "{id}.{ts}.{body}")).
"""
import base64
import binascii
import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
DEFAULT_TOLERANCE_SECONDS = 300

HEADER_ID = "webhook-id"
HEADER_TIMESTAMP = "webhook-timestamp"
HEADER_SIGNATURE = "webhook-signature"

VERSION_TAG = re.compile(r"^v\d+[a-z]*$")


class WebhookSecretError(Exception):
    """Raised when the configured signing secret cannot be decoded."""


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature check. ``reason`` is set only when invalid."""

    valid: bool
    reason: Optional[str] = None
    webhook_id: Optional[str] = None
    timestamp: Optional[int] = None


def _decode_secret(secret: str) -> bytes:
    material = secret[len(SECRET_PREFIX):] if secret.startswith(SECRET_PREFIX) else secret
    try:
        return base64.b64decode(material, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise WebhookSecretError("Webhook secret is not valid base64") from exc


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # Starlette headers are case-insensitive, plain dicts are not
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value


def _compute_signature(key: bytes, webhook_id: str, timestamp: str, body: bytes) -> str:
    signed_content = f"{webhook_id}.{timestamp}.".encode() + body
    digest = hmac.new(key, signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _as_bytes(raw_body: Union[bytes, str]) -> bytes:
    return raw_body.encode() if isinstance(raw_body, str) else raw_body


def verify_webhook_signature(
    raw_body: Union[bytes, str],
    headers: Mapping[str, str],
    secret: str,
    now: Optional[float] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> VerificationResult:
    """
    Verify a signed webhook delivery.

    Args:
        raw_body: Exact request body bytes as received
        headers: Request headers
        secret: Signing secret, optionally prefixed with ``whsec_``
        now: Current unix time (defaults to time.time())
        tolerance_seconds: Allowed clock skew in either direction

    Returns:
        VerificationResult with reason one of missing_headers,
        invalid_timestamp, stale_timestamp, invalid_signature when rejected

    Raises:
        WebhookSecretError: If the secret cannot be base64-decoded
    """
    webhook_id = _header(headers, HEADER_ID)
    timestamp_header = _header(headers, HEADER_TIMESTAMP)
    signature_header = _header(headers, HEADER_SIGNATURE)

    if not webhook_id or not timestamp_header or not signature_header:
        return VerificationResult(valid=False, reason="missing_headers", webhook_id=webhook_id)

    try:
        timestamp = int(timestamp_header)
    except ValueError:
        return VerificationResult(valid=False, reason="invalid_timestamp", webhook_id=webhook_id)

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        logger.warning(f"Rejecting webhook {webhook_id}: timestamp {timestamp} outside tolerance")
        return VerificationResult(
            valid=False, reason="stale_timestamp", webhook_id=webhook_id, timestamp=timestamp
        )

    key = _decode_secret(secret)
    expected = _compute_signature(key, webhook_id, timestamp_header, _as_bytes(raw_body))

    for signature in _candidate_signatures(signature_header):
        if hmac.compare_digest(signature.encode(), expected.encode()):
            return VerificationResult(valid=True, webhook_id=webhook_id, timestamp=timestamp)

    return VerificationResult(
        valid=False, reason="invalid_signature", webhook_id=webhook_id, timestamp=timestamp
    )



def _candidate_signatures(signature_header: str) -> List[str]:
    """
    Split a signature header into the signatures it carries.

    Entries are space separated, each either "v1,<sig>" or bare. A single
    entry with no version tag may also be a comma-separated list of bare
    signatures.
    """
    signatures = []
    for entry in signature_header.split(" "):
        parts = [part for part in entry.split(",") if part]
        if parts and VERSION_TAG.match(parts[0]):
            parts = parts[1:]
        signatures.extend(parts)
    return signatures


def sign_webhook_payload(
    raw_body: Union[bytes, str],
    secret: str,
    webhook_id: str,
    timestamp: Optional[int] = None,
) -> dict:
    """Build the three signing headers for a payload (used for local tooling and tests)."""
    ts = str(int(time.time()) if timestamp is None else timestamp)
    signature = _compute_signature(_decode_secret(secret), webhook_id, ts, _as_bytes(raw_body))
    return {
        HEADER_ID: webhook_id,
        HEADER_TIMESTAMP: ts,
        HEADER_SIGNATURE: f"v1,{signature}",
    }
