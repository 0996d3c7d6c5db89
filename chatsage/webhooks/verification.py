"""EventSub webhook signature verification.

Security contract:
- HMAC-SHA256 over message_id + timestamp + raw body, ``sha256=`` hex prefix
- Comparison uses hmac.compare_digest() (constant time)
- Missing secret or any missing header -> verification fails (fail-closed)
- The development bypass flag is off unless explicitly enabled
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping

logger = logging.getLogger(__name__)

HEADER_MESSAGE_ID = "twitch-eventsub-message-id"
HEADER_TIMESTAMP = "twitch-eventsub-message-timestamp"
HEADER_SIGNATURE = "twitch-eventsub-message-signature"
HEADER_MESSAGE_TYPE = "twitch-eventsub-message-type"

_SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, message_id: str, timestamp: str, raw_body: bytes) -> str:
    """Return the ``sha256=<hex>`` signature Twitch would send for this message."""
    message = message_id.encode("utf-8") + timestamp.encode("utf-8") + raw_body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return _SIGNATURE_PREFIX + digest


def verify_signature(
    headers: Mapping[str, str],
    raw_body: bytes,
    secret: str,
    *,
    skip_verification: bool = False,
) -> bool:
    """Verify an EventSub notification signature.

    Args:
        headers: Request headers with lowercase keys
        raw_body: Exact request body bytes as received
        secret: EventSub subscription secret
        skip_verification: Development bypass; never enabled by default

    Returns:
        True if the signature is valid (or the bypass is enabled)
    """
    if skip_verification:
        logger.warning("EventSub signature verification BYPASSED (development flag set)")
        return True

    message_id = headers.get(HEADER_MESSAGE_ID)
    timestamp = headers.get(HEADER_TIMESTAMP)
    signature = headers.get(HEADER_SIGNATURE)

    if not secret:
        logger.warning("TWITCH_EVENTSUB_SECRET not set, rejecting webhook")
        return False
    if not message_id or not timestamp or not signature:
        return False

    expected = compute_signature(secret, message_id, timestamp, raw_body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
