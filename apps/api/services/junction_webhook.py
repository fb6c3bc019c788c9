"""
Junction Webhook Service

Verifies Junction webhook signatures.

Junction signs each delivery with three headers (svix-id, svix-timestamp,
svix-signature). The signature is an HMAC-SHA256 over
"{id}.{timestamp}.{raw body}" keyed by the base64 part of the endpoint secret
("whsec_..."). The signature header may carry several space-separated
"v1,<base64>" entries during secret rotation.
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
SIGNATURE_VERSION = "v1"


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    return base64.b64decode(secret)


def compute_signature(secret: str, msg_id: str, timestamp: str, payload: str) -> str:
    """Base64 HMAC-SHA256 of the signed content (without the version prefix)."""
    signed_content = f"{msg_id}.{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(_secret_bytes(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(
    payload: str,
    msg_id: Optional[str],
    timestamp: Optional[str],
    signature_header: Optional[str],
    secret: Optional[str] = None,
    tolerance_s: Optional[int] = None,
    now: Optional[float] = None,
) -> bool:
    """
    Verify a Junction webhook delivery.

    Returns False for missing headers, a stale or future timestamp, an
    unconfigured or malformed secret, or no matching signature.
    """
    secret = secret if secret is not None else settings.JUNCTION_WEBHOOK_SECRET
    if not secret:
        logger.warning("JUNCTION_WEBHOOK_SECRET not set, cannot verify webhook signature")
        return False

    if not msg_id or not timestamp or not signature_header:
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        logger.warning(f"Non-numeric webhook timestamp: {timestamp}")
        return False

    tolerance_s = tolerance_s if tolerance_s is not None else settings.JUNCTION_SIGNATURE_TOLERANCE_S
    now = now if now is not None else time.time()
    if abs(now - sent_at) > tolerance_s:
        logger.warning(f"Webhook timestamp outside tolerance: {sent_at} (now {int(now)})")
        return False

    try:
        expected = compute_signature(secret, msg_id, timestamp, payload)
    except (binascii.Error, ValueError):
        logger.error("JUNCTION_WEBHOOK_SECRET is not valid base64")
        return False

    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version != SIGNATURE_VERSION:
            continue
        if hmac.compare_digest(signature, expected):
            return True
    return False
