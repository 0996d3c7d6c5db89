"""Collaborator contracts consumed by the liveness core.

The chat bot proper (IRC client, stream-info poller, Firestore channel
registry) lives outside this package. It feeds the core through these
protocols; the in-process implementations below back the default runtime.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol, runtime_checkable

from chatsage.lifecycle.state import normalize_login

logger = logging.getLogger(__name__)


@runtime_checkable
class ChannelAllowList(Protocol):
    """Authority deciding whether a channel's events are processed at all."""

    def is_channel_allowed(self, login: str) -> bool: ...


@runtime_checkable
class ChannelContext(Protocol):
    """Passive liveness signals and per-channel cached metadata."""

    def has_live_metadata(self, channel: str) -> bool: ...

    def channels_with_live_metadata(self) -> list[str]: ...

    def most_recent_message_age(self, channel: str) -> timedelta | None: ...

    def known_channels(self) -> list[str]: ...

    def clear_cached_metadata(self, channel: str) -> None: ...


class SettingsChannelAllowList:
    """Allow list backed by configuration.

    - allow list configured -> channel must be in it
    - otherwise, monitored channels configured -> channel must be monitored
    - neither configured -> every channel is allowed
    """

    def __init__(self, allowed: Iterable[str] = (), monitored: Iterable[str] = ()) -> None:
        self._allowed = {normalize_login(c) for c in allowed if normalize_login(c)}
        self._monitored = {normalize_login(c) for c in monitored if normalize_login(c)}

    def is_channel_allowed(self, login: str) -> bool:
        clean = normalize_login(login)
        if not clean:
            return False
        if self._allowed:
            return clean in self._allowed
        if self._monitored:
            return clean in self._monitored
        return True


@dataclass
class StreamMetadata:
    """Poll-derived stream context (subset the liveness core cares about)."""

    game: str | None = None
    title: str | None = None
    started_at: str | None = None

    @property
    def looks_live(self) -> bool:
        # A stream counts as live only with both a start time and a game.
        return bool(self.started_at) and self.started_at != "N/A" and bool(self.game) and self.game != "N/A"


class InMemoryChannelContext:
    """Per-channel stream metadata and chat recency, kept in process memory."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._metadata: dict[str, StreamMetadata] = {}
        self._last_message_at: dict[str, float] = {}

    def update_stream_metadata(self, channel: str, **fields: str | None) -> None:
        login = normalize_login(channel)
        current = self._metadata.get(login) or StreamMetadata()
        for key, value in fields.items():
            if not hasattr(current, key):
                raise AttributeError(f"Unknown stream metadata field: {key}")
            setattr(current, key, value)
        self._metadata[login] = current

    def record_message(self, channel: str, at: float | None = None) -> None:
        login = normalize_login(channel)
        ts = self._clock() if at is None else at
        if ts >= self._last_message_at.get(login, 0.0):
            self._last_message_at[login] = ts

    def has_live_metadata(self, channel: str) -> bool:
        meta = self._metadata.get(normalize_login(channel))
        return meta is not None and meta.looks_live

    def channels_with_live_metadata(self) -> list[str]:
        return sorted(login for login, meta in self._metadata.items() if meta.looks_live)

    def most_recent_message_age(self, channel: str) -> timedelta | None:
        last = self._last_message_at.get(normalize_login(channel))
        if last is None:
            return None
        return timedelta(seconds=max(0.0, self._clock() - last))

    def known_channels(self) -> list[str]:
        return sorted(set(self._metadata) | set(self._last_message_at))

    def clear_cached_metadata(self, channel: str) -> None:
        login = normalize_login(channel)
        if self._metadata.pop(login, None) is not None:
            logger.debug("Cleared cached stream metadata for %s", login)

    def reset(self) -> None:
        self._metadata.clear()
        self._last_message_at.clear()
