"""Webhook idempotency window and replay guard.

Security contract:
- Notification IDs are remembered in-process for a fixed TTL (10 min)
- A repeated ID inside the TTL is dropped with no side effects
- Notifications timestamped more than 600s in the past are dropped
  regardless of signature validity
- Memory is bounded by an opportunistic prune once the map exceeds a size
  threshold; there is no background timer
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from datetime import datetime, timezone

from chatsage.errors import Admission

logger = logging.getLogger(__name__)

_DEFAULT_TTL_SECONDS = 600
_DEFAULT_MAX_AGE_SECONDS = 600
_DEFAULT_PRUNE_THRESHOLD = 1000

# Twitch sends RFC3339 with up to nanosecond precision, e.g.
# 2023-07-19T10:11:12.634234626Z; datetime only parses microseconds.
_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an EventSub timestamp header into an aware UTC datetime."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IdempotencyWindow:
    """Bounded in-memory record of processed notification IDs."""

    def __init__(
        self,
        *,
        ttl_seconds: int = _DEFAULT_TTL_SECONDS,
        max_age_seconds: int = _DEFAULT_MAX_AGE_SECONDS,
        prune_threshold: int = _DEFAULT_PRUNE_THRESHOLD,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_age_seconds = max_age_seconds
        self.prune_threshold = prune_threshold
        self._clock = clock or time.time
        self._seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, message_id: object) -> bool:
        if not isinstance(message_id, str):
            return False
        received = self._seen.get(message_id)
        return received is not None and self._clock() - received < self.ttl_seconds

    def should_process_event(self, message_id: str | None, timestamp_header: str | None) -> Admission:
        """Decide whether a verified notification should be processed.

        Records the ID on admission, so a second identical delivery inside
        the TTL is reported as a duplicate.
        """
        now = self._clock()

        sent_at = parse_timestamp(timestamp_header)
        if sent_at is None or not message_id:
            logger.warning(
                "Dropping notification with unparseable metadata: id=%s ts=%r",
                message_id,
                timestamp_header,
            )
            return Admission.MALFORMED

        age = now - sent_at.timestamp()
        if age > self.max_age_seconds:
            logger.warning(
                "Dropping stale notification %s (age %.0fs > %ds)",
                message_id,
                age,
                self.max_age_seconds,
            )
            return Admission.STALE

        if message_id in self:
            logger.info("Duplicate notification dropped: %s", message_id)
            return Admission.DUPLICATE

        self._seen[message_id] = now
        if len(self._seen) > self.prune_threshold:
            self.prune(now)
        return Admission.ADMITTED

    def prune(self, now: float | None = None) -> int:
        """Remove entries older than the TTL. Returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [mid for mid, ts in self._seen.items() if now - ts >= self.ttl_seconds]
        for mid in expired:
            del self._seen[mid]
        if expired:
            logger.debug("Pruned %d expired notification IDs (%d kept)", len(expired), len(self._seen))
        return len(expired)

    def reset(self) -> None:
        self._seen.clear()
