"""Reconciler: cross-checks lifecycle state against Helix and repairs drift.

Offline notifications are best-effort and can be lost, leaving a channel in
the active set forever. Each reconciliation pass asks Helix which of the
believed-live channels are actually live and removes the rest ("phantoms"),
clearing their cached metadata as well.

Lookup failures never remove anything: the last known state is kept for the
cycle and the result is flagged so callers can stay conservative.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Protocol

from chatsage.collaborators import ChannelAllowList, ChannelContext
from chatsage.errors import AuthoritativeLookupError, ErrorKind, ReconciliationResult
from chatsage.lifecycle.state import LifecycleState, normalize_login

logger = logging.getLogger(__name__)


class LivenessSource(Protocol):
    async def get_live_logins(self, logins: Iterable[str]) -> set[str]: ...


class Reconciler:
    def __init__(
        self,
        state: LifecycleState,
        source: LivenessSource,
        context: ChannelContext,
        *,
        chat_activity_window_seconds: int = 300,
        allow_list: ChannelAllowList | None = None,
    ) -> None:
        self.state = state
        self.source = source
        self.context = context
        self.allow_list = allow_list
        self.chat_activity_window = timedelta(seconds=chat_activity_window_seconds)

    async def reconcile(self) -> ReconciliationResult:
        """One pass: remove every active channel Helix does not report live."""
        believed = set(self.state.get_active_streams())
        if not believed:
            return ReconciliationResult()

        try:
            actually_live = await self.source.get_live_logins(believed)
        except AuthoritativeLookupError as e:
            logger.warning(
                "Helix verification failed, keeping %d active streams for this cycle: %s",
                len(believed),
                e.message,
            )
            return ReconciliationResult(
                live=believed,
                lookup_failed=True,
                error=ErrorKind.AUTHORITATIVE_LOOKUP_FAILURE,
            )

        phantoms = believed - actually_live
        if phantoms:
            logger.warning(
                "Phantom streams detected, cleaning up: phantoms=%s believed=%s live=%s",
                sorted(phantoms),
                sorted(believed),
                sorted(actually_live),
            )
            for channel in sorted(phantoms):
                self.state.on_stream_status_change(channel, False)
                self.context.clear_cached_metadata(channel)

        return ReconciliationResult(
            live=believed & actually_live,
            phantoms=phantoms,
            error=ErrorKind.PHANTOM_STATE_DETECTED if phantoms else None,
        )

    def passive_signals(self, exclude: Iterable[str] = ()) -> list[str]:
        """Channels that look live from poll metadata or recent chat."""
        skip = {normalize_login(c) for c in exclude}
        found = set(self.context.channels_with_live_metadata())
        for channel in self.context.known_channels():
            age = self.context.most_recent_message_age(channel)
            if age is not None and age <= self.chat_activity_window:
                found.add(channel)
        return sorted(c for c in found if c not in skip and self._allowed(c))

    async def discover(self, candidates: Iterable[str]) -> ReconciliationResult:
        """Direct authoritative check; confirmed-live channels join the active set."""
        wanted = {normalize_login(c) for c in candidates if normalize_login(c)}
        wanted = {c for c in wanted if self._allowed(c)}
        if not wanted:
            return ReconciliationResult()
        try:
            live = await self.source.get_live_logins(wanted)
        except AuthoritativeLookupError as e:
            logger.warning("Helix discovery check failed for %d channels: %s", len(wanted), e.message)
            return ReconciliationResult(lookup_failed=True, error=ErrorKind.AUTHORITATIVE_LOOKUP_FAILURE)

        live &= wanted
        for channel in sorted(live):
            self.state.on_stream_status_change(channel, True)
        if live:
            logger.info("Helix discovery detected live streams: %s", ", ".join(sorted(live)))
        return ReconciliationResult(live=live)

    async def fallback_discovery(self, exclude: Iterable[str] = ()) -> ReconciliationResult:
        """Check Helix once when the active set is empty but passive signals disagree.

        Covers a lost first "online" notification. Does nothing when the active
        set is non-empty or no passive signal exists.
        """
        if len(self.state):
            return ReconciliationResult(live=set(self.state.get_active_streams()))
        signals = self.passive_signals(exclude)
        if not signals:
            return ReconciliationResult()
        logger.info("Passive signals suggest activity (%s), checking Helix", ", ".join(signals))
        result = await self.discover(signals)
        if result.live:
            logger.warning("Helix fallback detected live streams missed by notifications: %s", sorted(result.live))
        return result

    def _allowed(self, channel: str) -> bool:
        return self.allow_list is None or self.allow_list.is_channel_allowed(channel)
