"""Twilio-style webhook signature verification."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging

from ..errors import UnauthorizedError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"
SIGNATURE_PREFIX = "sha1="


def compute_signature(secret: str, url: str, raw_body: bytes) -> str:
    """Return ``sha1=`` + base64(HMAC-SHA1(secret, url + raw_body))."""

    mac = hmac.new(secret.encode("utf-8"), url.encode("utf-8") + raw_body, hashlib.sha1)
    return SIGNATURE_PREFIX + base64.b64encode(mac.digest()).decode("ascii")


def verify_signature(
    secret: str | None, url: str, raw_body: bytes, header: str | None
) -> bool:
    if not secret or not header:
        return False
    expected = compute_signature(secret, url, raw_body)
    return hmac.compare_digest(header.strip().encode("utf-8"), expected.encode("utf-8"))


def require_valid_signature(
    secret: str | None, url: str, raw_body: bytes, header: str | None
) -> None:
    """Raise :class:`UnauthorizedError` unless ``header`` signs the payload."""

    if not header:
        logger.warning("Webhook rejected: missing %s header", SIGNATURE_HEADER)
        raise UnauthorizedError("Missing webhook signature", code="MISSING_SIGNATURE")
    if not verify_signature(secret, url, raw_body, header):
        logger.warning("Webhook rejected: signature mismatch for %s", url)
        raise UnauthorizedError("Invalid webhook signature", code="INVALID_SIGNATURE")
