"""Cloud Tasks client for the self-ping keep-alive schedule.

Security contract:
- Ping tasks are authenticated HTTP POSTs carrying an OIDC token for the
  configured service account
- Each task has a bounded dispatch deadline
- Every API call is bounded by an explicit local timeout
- Transient errors are retried with backoff; permanent errors never are
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from google.api_core import exceptions
from google.cloud import tasks_v2
from google.protobuf import duration_pb2, timestamp_pb2

from chatsage.errors import ConfigurationError, ErrorKind, ScheduleResult
from chatsage.tasks.retry import RetryExhausted, call_with_backoff

logger = logging.getLogger(__name__)


class TaskSchedulingClient:
    """Creates and deletes one-shot keep-alive ping tasks."""

    def __init__(
        self,
        *,
        project: str,
        location: str,
        queue: str,
        callback_url: str,
        service_account_email: str,
        dispatch_deadline_seconds: int = 10,
        call_timeout: float = 10.0,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        client: Any = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.project = project
        self.location = location
        self.queue = queue
        self.callback_url = callback_url
        self.service_account_email = service_account_email
        self.dispatch_deadline_seconds = dispatch_deadline_seconds
        self.call_timeout = call_timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._client = client
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "TaskSchedulingClient":
        return cls(
            project=settings.google_cloud_project,
            location=settings.gcp_region,
            queue=settings.keep_alive_queue,
            callback_url=settings.keep_alive_url if settings.public_url else "",
            service_account_email=settings.service_account_email,
            dispatch_deadline_seconds=settings.task_dispatch_deadline_seconds,
            call_timeout=settings.task_call_timeout_seconds,
            max_attempts=settings.task_retry_max_attempts,
            base_delay=settings.task_retry_base_delay,
            max_delay=settings.task_retry_max_delay,
            **kwargs,
        )

    def _tasks(self) -> Any:
        if self._client is None:
            self._client = tasks_v2.CloudTasksAsyncClient()
        return self._client

    def _require_config(self) -> None:
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLOUD_PROJECT", self.project),
                ("GCP_REGION", self.location),
                ("KEEP_ALIVE_QUEUE", self.queue),
                ("PUBLIC_URL", self.callback_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Keep-alive tasks need {', '.join(missing)}")

    @property
    def queue_path(self) -> str:
        return tasks_v2.CloudTasksClient.queue_path(self.project, self.location, self.queue)

    def build_task(self, delay_seconds: int) -> tasks_v2.Task:
        due = timestamp_pb2.Timestamp()
        due.FromDatetime(datetime.fromtimestamp(self._clock() + delay_seconds, tz=timezone.utc))
        return tasks_v2.Task(
            http_request=tasks_v2.HttpRequest(
                http_method=tasks_v2.HttpMethod.POST,
                url=self.callback_url,
                oidc_token=tasks_v2.OidcToken(service_account_email=self.service_account_email),
            ),
            schedule_time=due,
            dispatch_deadline=duration_pb2.Duration(seconds=self.dispatch_deadline_seconds),
        )

    async def schedule_next_ping(self, delay_seconds: int) -> ScheduleResult:
        """Create one ping task due ``delay_seconds`` from now.

        Never raises: the outcome, including the error kind, is in the result.
        """
        try:
            self._require_config()
        except ConfigurationError as e:
            logger.error("Cannot schedule keep-alive ping: %s", e.message)
            return ScheduleResult(error=e.kind, detail=e.message)

        parent = self.queue_path
        task = self.build_task(delay_seconds)

        async def _create() -> Any:
            return await asyncio.wait_for(
                self._tasks().create_task(parent=parent, task=task, timeout=self.call_timeout),
                timeout=self.call_timeout,
            )

        try:
            created, attempts = await call_with_backoff(
                _create,
                name="create_task",
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            logger.error(
                "Keep-alive ping not scheduled, transient errors exhausted %d attempts: %s",
                e.attempts,
                type(e.last).__name__,
            )
            return ScheduleResult(
                attempts=e.attempts,
                error=ErrorKind.TASK_SCHEDULING_TRANSIENT,
                detail=str(e.last),
            )
        except exceptions.GoogleAPICallError as e:
            logger.error("Keep-alive ping not scheduled, permanent error: %s", type(e).__name__)
            return ScheduleResult(
                attempts=1,
                error=ErrorKind.TASK_SCHEDULING_PERMANENT,
                detail=str(e),
            )

        logger.debug("Next keep-alive ping scheduled in %ds: %s", delay_seconds, created.name)
        return ScheduleResult(handle=created.name, attempts=attempts)

    async def delete_task(self, handle: str | None) -> bool:
        """Best-effort delete. A task that is already gone counts as deleted."""
        if not handle:
            return True
        try:
            await asyncio.wait_for(
                self._tasks().delete_task(name=handle, timeout=self.call_timeout),
                timeout=self.call_timeout,
            )
        except exceptions.NotFound:
            logger.debug("Keep-alive task already gone: %s", handle)
            return True
        except (exceptions.GoogleAPICallError, asyncio.TimeoutError) as e:
            logger.warning("Failed to delete keep-alive task %s: %s", handle, type(e).__name__)
            return False
        logger.info("Keep-alive task deleted: %s", handle)
        return True

    async def ensure_queue(self) -> bool:
        """Create the keep-alive queue (no redelivery) if it does not exist.

        Returns True when the queue was created, False when it already existed.
        """
        if not self.project or not self.location or not self.queue:
            raise ConfigurationError("GOOGLE_CLOUD_PROJECT, GCP_REGION and KEEP_ALIVE_QUEUE are required")
        client = self._tasks()
        try:
            await asyncio.wait_for(
                client.get_queue(name=self.queue_path, timeout=self.call_timeout),
                timeout=self.call_timeout,
            )
            logger.info("Keep-alive queue %s already exists in %s", self.queue, self.location)
            return False
        except exceptions.NotFound:
            pass

        await asyncio.wait_for(
            client.create_queue(
                parent=tasks_v2.CloudTasksClient.common_location_path(self.project, self.location),
                queue=tasks_v2.Queue(
                    name=self.queue_path,
                    retry_config=tasks_v2.RetryConfig(max_attempts=1),
                ),
                timeout=self.call_timeout,
            ),
            timeout=self.call_timeout,
        )
        logger.info("Keep-alive queue %s created in %s", self.queue, self.location)
        return True
