"""KeepAlive actor: starts and stops the self-ping schedule.

States are Inactive (initial) and Active. While Active, every ping
reconciles the active set against Helix and either schedules the next ping
or counts a negative check; after ``failure_threshold`` consecutive negative
checks the actor stops. Scheduling failures are logged and never change the
state by themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from chatsage.errors import PingOutcome, ScheduleResult
from chatsage.lifecycle.reconciler import Reconciler
from chatsage.tasks.scheduling import TaskSchedulingClient

logger = logging.getLogger(__name__)


class KeepAliveActor:
    def __init__(
        self,
        reconciler: Reconciler,
        tasks: TaskSchedulingClient,
        *,
        ping_delay_seconds: int = 60,
        failure_threshold: int = 3,
        final_check_channels: Callable[[], Iterable[str]] = tuple,
    ) -> None:
        self.reconciler = reconciler
        self.tasks = tasks
        self.ping_delay_seconds = ping_delay_seconds
        self.failure_threshold = max(1, failure_threshold)
        self._final_check_channels = final_check_channels
        self.is_active = False
        self.consecutive_failed_checks = 0
        self.task_handle: str | None = None

    def status(self) -> dict:
        return {
            "is_active": self.is_active,
            "consecutive_failed_checks": self.consecutive_failed_checks,
            "has_scheduled_task": self.task_handle is not None,
        }

    async def start(self) -> bool:
        """Inactive -> Active and schedule the first ping. False if already Active.

        A start while Active still counts as a positive signal: the failure
        counter is reset, and a chain with no outstanding ping is rescheduled.
        """
        if self.is_active:
            self.consecutive_failed_checks = 0
            if self.task_handle is None:
                logger.warning("KeepAlive active without a scheduled ping, rescheduling")
                await self._schedule()
            else:
                logger.debug("KeepAlive already active, skipping start")
            return False
        logger.info("KeepAlive starting, first ping in %ds", self.ping_delay_seconds)
        self.is_active = True
        self.consecutive_failed_checks = 0
        await self._schedule()
        return True

    async def stop(self) -> bool:
        """Active -> Inactive and delete the outstanding task. False if already Inactive."""
        if not self.is_active:
            logger.debug("KeepAlive already stopped, skipping stop")
            return False
        logger.info("KeepAlive stopping, allowing instance to scale down")
        self.is_active = False
        self.consecutive_failed_checks = 0
        handle, self.task_handle = self.task_handle, None
        if handle:
            await self.tasks.delete_task(handle)
        return True

    async def handle_ping(self) -> PingOutcome:
        """Run one keep-alive check."""
        if not self.is_active:
            logger.warning("Keep-alive ping received while inactive, ignoring")
            return PingOutcome.IGNORED

        # The task that delivered this ping has run; it is no longer outstanding.
        self.task_handle = None
        result = await self.reconciler.reconcile()
        if not self.is_active:
            logger.info("KeepAlive stopped during reconciliation, not rescheduling")
            return PingOutcome.IGNORED

        if result.lookup_failed:
            logger.warning(
                "Keep-alive check inconclusive (Helix unavailable), keeping %d streams and rescheduling",
                result.live_count,
            )
            await self._schedule()
            return PingOutcome.INCONCLUSIVE

        reasons: list[str] = []
        if result.live_count:
            reasons.append(f"{result.live_count} streams verified live: {', '.join(sorted(result.live))}")
        signals = self.reconciler.passive_signals()
        if signals:
            reasons.append(f"passive signals from {', '.join(signals)}")

        if not reasons:
            final = await self.reconciler.discover(self._final_check_channels())
            if not self.is_active:
                return PingOutcome.IGNORED
            if final.lookup_failed:
                logger.warning("Final Helix check failed, keeping keep-alive running this cycle")
                await self._schedule()
                return PingOutcome.INCONCLUSIVE
            if final.live:
                reasons.append(f"final Helix check found {', '.join(sorted(final.live))}")

        if reasons:
            self.consecutive_failed_checks = 0
            logger.info("Keep-alive check passed: %s", "; ".join(reasons))
            await self._schedule()
            return PingOutcome.CONTINUED

        self.consecutive_failed_checks += 1
        logger.warning(
            "Keep-alive check failed (%d/%d): no active streams detected",
            self.consecutive_failed_checks,
            self.failure_threshold,
        )
        if self.consecutive_failed_checks >= self.failure_threshold:
            logger.warning("%d consecutive failed checks, stopping keep-alive", self.failure_threshold)
            await self.stop()
            return PingOutcome.STOPPED

        await self._schedule()
        return PingOutcome.GRACE

    async def resume_after_interrupted_ping(self) -> PingOutcome:
        """Keep the chain alive after a ping that timed out or crashed.

        Counted like a failed lookup: no change to the failure counter.
        """
        if not self.is_active:
            return PingOutcome.IGNORED
        if self.task_handle is not None:
            return PingOutcome.INCONCLUSIVE
        logger.warning("Keep-alive ping interrupted, scheduling the next one anyway")
        await self._schedule()
        return PingOutcome.INCONCLUSIVE

    async def _schedule(self) -> ScheduleResult:
        result = await self.tasks.schedule_next_ping(self.ping_delay_seconds)
        if not result.ok:
            logger.error("Keep-alive ping not scheduled (%s): %s", result.error, result.detail)
            return result
        if not self.is_active:
            # stop() ran while the create call was in flight
            await self.tasks.delete_task(result.handle)
            return result
        if self.task_handle is not None and self.task_handle != result.handle:
            # a concurrent start() already scheduled the next ping
            logger.warning("Dropping duplicate keep-alive ping %s", result.handle)
            await self.tasks.delete_task(result.handle)
            return result
        self.task_handle = result.handle
        return result

    def reset(self) -> None:
        self.is_active = False
        self.consecutive_failed_checks = 0
        self.task_handle = None
