"""Shared fixtures for the ChatSage liveness-core test suite."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from chatsage.app import create_app
from chatsage.collaborators import InMemoryChannelContext
from chatsage.config import Settings
from chatsage.errors import AuthoritativeLookupError
from chatsage.runtime import build_runtime
from chatsage.webhooks.verification import compute_signature

SECRET = "test-eventsub-secret"


class FakeLiveness:
    """Stands in for Helix: ``live`` is the authoritative truth."""

    def __init__(self, live: set[str] | None = None) -> None:
        self.live: set[str] = set(live or ())
        self.fail = False
        self.delay = 0.0
        self.calls: list[set[str]] = []

    async def get_live_logins(self, logins) -> set[str]:
        wanted = {login.lower() for login in logins}
        self.calls.append(wanted)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise AuthoritativeLookupError("helix down")
        return self.live & wanted


class FakeCloudTasks:
    """Records Cloud Tasks calls; queued exceptions are raised in order."""

    def __init__(self) -> None:
        self.created: list[SimpleNamespace] = []
        self.deleted: list[str] = []
        self.create_errors: list[BaseException] = []
        self.delete_errors: list[BaseException] = []
        self.get_queue_error: BaseException | None = None
        self.queues_created: list = []
        self._n = 0

    async def create_task(self, parent, task, timeout=None):
        if self.create_errors:
            raise self.create_errors.pop(0)
        self._n += 1
        created = SimpleNamespace(name=f"{parent}/tasks/ping-{self._n}", task=task, timeout=timeout)
        self.created.append(created)
        return created

    async def delete_task(self, name, timeout=None):
        if self.delete_errors:
            raise self.delete_errors.pop(0)
        self.deleted.append(name)

    async def get_queue(self, name, timeout=None):
        if self.get_queue_error is not None:
            raise self.get_queue_error
        return SimpleNamespace(name=name)

    async def create_queue(self, parent, queue, timeout=None):
        self.queues_created.append((parent, queue))
        return queue


def make_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "twitch_eventsub_secret": SECRET,
        "twitch_client_id": "cid",
        "twitch_client_secret": "csecret",
        "twitch_channels": "alice,bob",
        "public_url": "https://bot.example.com",
        "google_cloud_project": "chatsage-test",
        "task_retry_base_delay": 0.0,
        "discover_on_startup": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def liveness() -> FakeLiveness:
    return FakeLiveness()


@pytest.fixture()
def cloud_tasks() -> FakeCloudTasks:
    return FakeCloudTasks()


@pytest.fixture()
def runtime(settings, liveness, cloud_tasks):
    rt = build_runtime(
        settings,
        helix=liveness,
        tasks_client=cloud_tasks,
        context=InMemoryChannelContext(),
    )
    yield rt
    rt.reset()


@pytest.fixture()
def client(runtime):
    with TestClient(create_app(runtime)) as c:
        yield c


def now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def eventsub_request(
    payload: dict,
    *,
    message_id: str = "msg-1",
    message_type: str = "notification",
    timestamp: str | None = None,
    secret: str = SECRET,
) -> tuple[bytes, dict[str, str]]:
    """Body and signed headers for an EventSub delivery."""
    body = json.dumps(payload).encode()
    ts = timestamp or now_timestamp()
    headers = {
        "Twitch-Eventsub-Message-Id": message_id,
        "Twitch-Eventsub-Message-Timestamp": ts,
        "Twitch-Eventsub-Message-Type": message_type,
        "Twitch-Eventsub-Message-Signature": compute_signature(secret, message_id, ts, body),
        "Content-Type": "application/json",
    }
    return body, headers


def stream_event(sub_type: str, login: str) -> dict:
    return {
        "subscription": {"id": "sub-1", "type": sub_type, "status": "enabled", "version": "1"},
        "event": {
            "broadcaster_user_id": f"id-{login}",
            "broadcaster_user_login": login,
            "broadcaster_user_name": login.title(),
            "type": "live",
            "started_at": "2026-01-01T00:00:00Z",
        },
    }
