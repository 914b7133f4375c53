"""
Security Utilities
==================

Webhook signature verification, input sanitization, and redaction helpers.
"""

import base64
import binascii
import hashlib
import hmac
import re
import logging
import time
from pathlib import Path
from typing import Mapping, Optional, Union

from .exceptions import WebhookAuthError

logger = logging.getLogger(__name__)

# Header names used by Replicate (Svix-compatible signing scheme)
WEBHOOK_ID_HEADER = "webhook-id"
WEBHOOK_TIMESTAMP_HEADER = "webhook-timestamp"
WEBHOOK_SIGNATURE_HEADER = "webhook-signature"

DEFAULT_TOLERANCE_SECONDS = 300


def _decode_secret(secret: str) -> bytes:
    """Decode a ``whsec_``-prefixed base64 signing secret."""
    raw = secret.split("_", 1)[1] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        # Plain-text secrets are accepted as-is
        return raw.encode("utf-8")


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: Union[str, bytes]) -> str:
    """
    Compute the base64 HMAC-SHA256 signature for a webhook delivery.

    The signed content is ``"{webhook_id}.{timestamp}.{body}"``, with the body
    signed as the raw bytes received.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(_decode_secret(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def sign_webhook(
    secret: str,
    webhook_id: str,
    body: Union[str, bytes],
    timestamp: Optional[int] = None,
) -> dict:
    """Build the signature headers for a delivery (used by clients and tests)."""
    ts = str(timestamp if timestamp is not None else int(time.time()))
    return {
        WEBHOOK_ID_HEADER: webhook_id,
        WEBHOOK_TIMESTAMP_HEADER: ts,
        WEBHOOK_SIGNATURE_HEADER: f"v1,{compute_signature(secret, webhook_id, ts, body)}",
    }


def verify_webhook_signature(
    headers: Mapping[str, str],
    body: Union[str, bytes],
    secret: Optional[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> str:
    """
    Verify a webhook delivery and return its webhook id.

    Args:
        headers: Request headers (case-insensitive lookup is applied)
        body: Raw request body exactly as received
        secret: Per-account signing secret
        tolerance_seconds: Maximum clock skew allowed for the timestamp
        now: Current unix time (defaults to ``time.time()``)

    Raises:
        WebhookAuthError: If any header is missing, the timestamp is stale,
            or no ``v1`` signature matches
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    webhook_id = lowered.get(WEBHOOK_ID_HEADER)
    timestamp = lowered.get(WEBHOOK_TIMESTAMP_HEADER)
    signature_header = lowered.get(WEBHOOK_SIGNATURE_HEADER)

    if not secret:
        raise WebhookAuthError("Webhook secret is not configured", webhook_id=webhook_id)

    if not webhook_id or not timestamp or not signature_header:
        raise WebhookAuthError("Missing webhook signature headers", webhook_id=webhook_id)

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookAuthError("Malformed webhook timestamp", webhook_id=webhook_id)

    current = now if now is not None else time.time()
    if abs(current - sent_at) > tolerance_seconds:
        raise WebhookAuthError("Webhook timestamp outside tolerance", webhook_id=webhook_id)

    expected = compute_signature(secret, webhook_id, timestamp, body)

    # Several space-separated signatures may be present during secret rotation
    for candidate in signature_header.split(" "):
        version, _, signature = candidate.partition(",")
        if version == "v1" and hmac.compare_digest(signature.encode("ascii", "ignore"), expected.encode("ascii")):
            return webhook_id

    raise WebhookAuthError("Invalid webhook signature", webhook_id=webhook_id)


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Sanitize a filename by removing dangerous characters.

    Args:
        filename: Original filename
        max_length: Maximum allowed length

    Returns:
        Sanitized filename safe for filesystem operations
    """
    if not filename:
        return "unnamed"

    # Keep: alphanumeric, underscore, hyphen, dot, space
    sanitized = re.sub(r"[^\w\-. ]", "_", filename)
    sanitized = re.sub(r"[_\s]+", "_", sanitized)
    sanitized = sanitized.strip("._- ")

    if len(sanitized) > max_length:
        name = Path(sanitized).stem
        ext = Path(sanitized).suffix
        sanitized = name[:max_length - len(ext)] + ext

    if not sanitized or sanitized in (".", ".."):
        sanitized = "unnamed"

    return sanitized


def redact_api_key(text: str) -> str:
    """
    Redact API keys and sensitive tokens from text.

    Args:
        text: Text that might contain API keys

    Returns:
        Text with API keys redacted
    """
    if not text:
        return text

    patterns = [
        (r"Bearer\s+[A-Za-z0-9_\-\.]+", "Bearer ***REDACTED***"),
        # Replicate tokens
        (r"r8_[A-Za-z0-9]+", "r8_***REDACTED***"),
        # Webhook signing secrets
        (r"whsec_[A-Za-z0-9+/=]+", "whsec_***REDACTED***"),
        (r"api[_-]?key['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_\-]+", "api_key: ***REDACTED***"),
        (r"(REPLICATE_API_TOKEN|REPLICATE_WEBHOOK_SECRET|COMPILE_API_TOKEN)=[^\s]+", r"\1=***REDACTED***"),
    ]

    result = text
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    return result
