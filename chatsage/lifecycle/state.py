"""Lifecycle state: the single source of truth for which channels are live.

Mutated by webhook events, by the reconciler (removals of phantom streams and
additions confirmed by Helix) and by an explicit manual clear. Not persisted:
after a restart liveness is rediscovered from Helix.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def normalize_login(channel: str) -> str:
    return (channel or "").strip().lstrip("#").lower()


class LifecycleState:
    """Set of lowercase channel logins believed to be live."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, channel: object) -> bool:
        return isinstance(channel, str) and normalize_login(channel) in self._active

    def on_stream_status_change(self, channel: str, is_live: bool) -> bool:
        """Apply an online/offline transition.

        Idempotent: re-adding a live channel or removing an absent one only
        guarantees final membership. Returns True when membership changed.
        """
        login = normalize_login(channel)
        if not login:
            return False

        was_live = login in self._active
        if is_live:
            self._active.add(login)
            if not was_live:
                logger.info("Stream %s went ONLINE (%d active)", login, len(self._active))
        else:
            self._active.discard(login)
            if was_live:
                logger.info("Stream %s went OFFLINE (%d active)", login, len(self._active))
        return was_live != is_live

    def get_active_streams(self) -> list[str]:
        """Snapshot copy; later mutations are not reflected in it."""
        return sorted(self._active)

    def clear(self) -> list[str]:
        """Explicit manual clear. Returns the logins that were removed."""
        removed = sorted(self._active)
        self._active.clear()
        if removed:
            logger.warning("Active stream set cleared manually: %s", ", ".join(removed))
        return removed

    def reset(self) -> None:
        self._active.clear()
