"""EventSub notification parsing and dispatch.

Parses the EventSub envelope into one of a small set of frozen notification
types through a parser table keyed by subscription type, then routes each
type through a handler table. Runs after the webhook has been acknowledged.

Security contract:
- Only verified, admitted notifications reach this module
- Channels missing from the allow list never enter the active set
- Payload fields are read defensively; a malformed event becomes
  UnknownNotification, never an exception
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union

from chatsage.collaborators import ChannelAllowList, ChannelContext
from chatsage.keepalive.actor import KeepAliveActor
from chatsage.lifecycle.reconciler import Reconciler
from chatsage.lifecycle.state import LifecycleState, normalize_login
from chatsage.observability import bind_log_context

logger = logging.getLogger(__name__)

STREAM_ONLINE = "stream.online"
STREAM_OFFLINE = "stream.offline"
AD_BREAK_BEGIN = "channel.ad_break.begin"


@dataclass(frozen=True)
class StreamOnline:
    login: str
    broadcaster_id: str = ""
    stream_type: str = "live"
    started_at: str = ""


@dataclass(frozen=True)
class StreamOffline:
    login: str
    broadcaster_id: str = ""


@dataclass(frozen=True)
class AdBreakBegin:
    login: str
    duration_seconds: int = 0
    is_automatic: bool = False


@dataclass(frozen=True)
class UnknownNotification:
    subscription_type: str
    login: str = ""


Notification = Union[StreamOnline, StreamOffline, AdBreakBegin, UnknownNotification]


def _login(event: dict) -> str:
    return normalize_login(str(event.get("broadcaster_user_login") or ""))


def _parse_online(event: dict) -> Notification:
    return StreamOnline(
        login=_login(event),
        broadcaster_id=str(event.get("broadcaster_user_id") or ""),
        stream_type=str(event.get("type") or "live"),
        started_at=str(event.get("started_at") or ""),
    )


def _parse_offline(event: dict) -> Notification:
    return StreamOffline(login=_login(event), broadcaster_id=str(event.get("broadcaster_user_id") or ""))


def _parse_ad_break(event: dict) -> Notification:
    try:
        duration = int(event.get("duration_seconds") or 0)
    except (TypeError, ValueError):
        duration = 0
    return AdBreakBegin(
        login=_login(event),
        duration_seconds=duration,
        is_automatic=str(event.get("is_automatic")).lower() == "true",
    )


_PARSERS: dict[str, Callable[[dict], Notification]] = {
    STREAM_ONLINE: _parse_online,
    STREAM_OFFLINE: _parse_offline,
    AD_BREAK_BEGIN: _parse_ad_break,
}


def parse_notification(payload: Any) -> Notification:
    """Turn an EventSub ``notification`` body into a typed notification."""
    if not isinstance(payload, dict):
        return UnknownNotification(subscription_type="")
    subscription = payload.get("subscription") if isinstance(payload.get("subscription"), dict) else {}
    event = payload.get("event") if isinstance(payload.get("event"), dict) else {}
    sub_type = str(subscription.get("type") or "")

    parser = _PARSERS.get(sub_type)
    if parser is None:
        return UnknownNotification(subscription_type=sub_type, login=_login(event))
    parsed = parser(event)
    if not parsed.login:
        return UnknownNotification(subscription_type=sub_type)
    return parsed


class NotificationDispatcher:
    """Applies notifications to lifecycle state and the keep-alive actor."""

    def __init__(
        self,
        state: LifecycleState,
        actor: KeepAliveActor,
        reconciler: Reconciler,
        allow_list: ChannelAllowList,
        context: ChannelContext,
    ) -> None:
        self.state = state
        self.actor = actor
        self.reconciler = reconciler
        self.allow_list = allow_list
        self.context = context
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            StreamOnline: self._on_online,
            StreamOffline: self._on_offline,
            AdBreakBegin: self._on_ad_break,
            UnknownNotification: self._on_unknown,
        }

    async def dispatch(self, notification: Notification, *, message_id: str | None = None) -> None:
        """Route one notification. Errors are logged, never raised."""
        handler = self._handlers[type(notification)]
        with bind_log_context(message_id=message_id, channel=notification.login or None):
            try:
                await handler(notification)
            except Exception:
                logger.exception("Failed to handle %s notification", type(notification).__name__)

    async def _on_online(self, n: StreamOnline) -> None:
        if not self.allow_list.is_channel_allowed(n.login):
            logger.info("Ignoring stream.online for %s: channel not allowed", n.login)
            return
        self.state.on_stream_status_change(n.login, True)
        await self.actor.start()

    async def _on_offline(self, n: StreamOffline) -> None:
        self.state.on_stream_status_change(n.login, False)
        self.context.clear_cached_metadata(n.login)
        if len(self.state):
            return

        # Last stream gone: make sure no other channel went live unannounced.
        fallback = await self.reconciler.fallback_discovery(exclude=[n.login])
        if fallback.lookup_failed:
            logger.warning("Keeping keep-alive running, fallback check could not reach Helix")
            return
        if fallback.live:
            await self.actor.start()
            return
        await self.actor.stop()

    async def _on_ad_break(self, n: AdBreakBegin) -> None:
        logger.info(
            "Ad break started on %s: %ds (automatic=%s)",
            n.login,
            n.duration_seconds,
            n.is_automatic,
        )

    async def _on_unknown(self, n: UnknownNotification) -> None:
        logger.debug("Unhandled notification type %r", n.subscription_type)
