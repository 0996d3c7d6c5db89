"""Process-wide wiring of the liveness core.

One Runtime is built at process start and handed to the FastAPI app. Tests
build their own with fakes injected and call ``reset()`` between cases.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from chatsage.collaborators import ChannelAllowList, InMemoryChannelContext, SettingsChannelAllowList
from chatsage.config import Settings, get_settings
from chatsage.keepalive.actor import KeepAliveActor
from chatsage.lifecycle.reconciler import LivenessSource, Reconciler
from chatsage.lifecycle.state import LifecycleState
from chatsage.tasks.scheduling import TaskSchedulingClient
from chatsage.twitch.helix import HelixClient
from chatsage.webhooks.idempotency import IdempotencyWindow
from chatsage.webhooks.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    state: LifecycleState
    window: IdempotencyWindow
    helix: LivenessSource
    context: InMemoryChannelContext
    allow_list: ChannelAllowList
    reconciler: Reconciler
    tasks: TaskSchedulingClient
    actor: KeepAliveActor
    dispatcher: NotificationDispatcher

    def reset(self) -> None:
        """Back to process-start state (tests only)."""
        self.state.reset()
        self.window.reset()
        self.context.reset()
        self.actor.reset()

    async def discover_on_startup(self) -> bool:
        """Rediscover liveness from Helix; state is never carried across restarts.

        Returns True when the keep-alive actor was started.
        """
        channels = self.settings.channel_list
        if not channels:
            logger.info("No monitored channels configured, skipping startup discovery")
            return False
        result = await self.reconciler.discover(channels)
        if result.lookup_failed:
            logger.warning("Startup discovery failed, waiting for stream.online notifications")
            return False
        if not result.live:
            logger.info("Startup discovery: none of %d channels live", len(channels))
            return False
        return await self.actor.start()

    async def clear_active_streams(self) -> list[str]:
        """Manual clear: empty the active set and stop pinging."""
        removed = self.state.clear()
        for channel in removed:
            self.context.clear_cached_metadata(channel)
        await self.actor.stop()
        return removed

    async def aclose(self) -> None:
        close = getattr(self.helix, "aclose", None)
        if close is not None:
            await close()


def build_runtime(
    settings: Settings | None = None,
    *,
    helix: LivenessSource | None = None,
    tasks_client: Any = None,
    context: InMemoryChannelContext | None = None,
    allow_list: ChannelAllowList | None = None,
) -> Runtime:
    """Construct the object graph once. Collaborators can be injected."""
    settings = settings or get_settings()
    state = LifecycleState()
    window = IdempotencyWindow(
        ttl_seconds=settings.dedup_ttl_seconds,
        max_age_seconds=settings.notification_max_age_seconds,
        prune_threshold=settings.dedup_prune_threshold,
    )
    helix = helix if helix is not None else HelixClient.from_settings(settings)
    context = context if context is not None else InMemoryChannelContext()
    allow_list = allow_list if allow_list is not None else SettingsChannelAllowList(
        settings.allowed_channel_list, settings.channel_list
    )
    reconciler = Reconciler(
        state,
        helix,
        context,
        chat_activity_window_seconds=settings.chat_activity_window_seconds,
        allow_list=allow_list,
    )
    tasks = TaskSchedulingClient.from_settings(settings, client=tasks_client)
    actor = KeepAliveActor(
        reconciler,
        tasks,
        ping_delay_seconds=settings.keepalive_ping_delay_seconds,
        failure_threshold=settings.keepalive_failure_threshold,
        final_check_channels=lambda: settings.channel_list,
    )
    dispatcher = NotificationDispatcher(state, actor, reconciler, allow_list, context)
    return Runtime(
        settings=settings,
        state=state,
        window=window,
        helix=helix,
        context=context,
        allow_list=allow_list,
        reconciler=reconciler,
        tasks=tasks,
        actor=actor,
        dispatcher=dispatcher,
    )
