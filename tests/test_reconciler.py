"""Tests for the reconciler: phantom repair, passive signals, fallback discovery."""

from __future__ import annotations

import pytest
from conftest import FakeLiveness

from chatsage.collaborators import InMemoryChannelContext, SettingsChannelAllowList
from chatsage.errors import ErrorKind
from chatsage.lifecycle.reconciler import Reconciler
from chatsage.lifecycle.state import LifecycleState


class Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _setup(active=(), live=(), allowed=None):
    state = LifecycleState()
    for channel in active:
        state.on_stream_status_change(channel, True)
    clock = Clock()
    context = InMemoryChannelContext(clock=clock)
    source = FakeLiveness(set(live))
    allow_list = SettingsChannelAllowList(allowed) if allowed is not None else None
    reconciler = Reconciler(state, source, context, chat_activity_window_seconds=300, allow_list=allow_list)
    return state, context, source, clock, reconciler


class TestReconcile:
    @pytest.mark.asyncio
    async def test_removes_phantoms_and_clears_metadata(self):
        state, context, source, _, reconciler = _setup(active=["a", "b", "c"], live=["a"])
        for channel in ("a", "b", "c"):
            context.update_stream_metadata(channel, game="Chess", started_at="2026-01-01T00:00:00Z")

        result = await reconciler.reconcile()

        assert state.get_active_streams() == ["a"]
        assert result.live == {"a"}
        assert result.phantoms == {"b", "c"}
        assert result.error is ErrorKind.PHANTOM_STATE_DETECTED
        assert context.has_live_metadata("a")
        assert not context.has_live_metadata("b")
        assert not context.has_live_metadata("c")

    @pytest.mark.asyncio
    async def test_phantoms_logged_at_warning(self, caplog):
        _, _, _, _, reconciler = _setup(active=["ghost"])
        with caplog.at_level("WARNING"):
            await reconciler.reconcile()
        assert "Phantom streams detected" in caplog.text

    @pytest.mark.asyncio
    async def test_all_live_no_change(self):
        state, _, _, _, reconciler = _setup(active=["a", "b"], live=["a", "b", "z"])
        result = await reconciler.reconcile()
        assert state.get_active_streams() == ["a", "b"]
        assert result.phantoms == set()
        assert result.error is None

    @pytest.mark.asyncio
    async def test_empty_state_skips_lookup(self):
        _, _, source, _, reconciler = _setup()
        result = await reconciler.reconcile()
        assert result.live_count == 0
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_lookup_failure_keeps_state(self):
        state, _, source, _, reconciler = _setup(active=["a", "b"])
        source.fail = True
        result = await reconciler.reconcile()
        assert result.lookup_failed is True
        assert result.error is ErrorKind.AUTHORITATIVE_LOOKUP_FAILURE
        assert result.live == {"a", "b"}
        assert state.get_active_streams() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self):
        state, _, _, _, reconciler = _setup(active=["a", "b"], live=["a"])
        await reconciler.reconcile()
        second = await reconciler.reconcile()
        assert second.phantoms == set()
        assert state.get_active_streams() == ["a"]


class TestPassiveSignals:
    def test_live_metadata_counts(self):
        _, context, _, _, reconciler = _setup()
        context.update_stream_metadata("alice", game="Chess", started_at="2026-01-01T00:00:00Z")
        context.update_stream_metadata("bob", game="N/A", started_at="N/A")
        assert reconciler.passive_signals() == ["alice"]

    def test_recent_chat_counts(self):
        _, context, _, clock, reconciler = _setup()
        context.record_message("alice", at=clock.now - 120)
        context.record_message("bob", at=clock.now - 301)
        assert reconciler.passive_signals() == ["alice"]

    def test_exclude(self):
        _, context, _, clock, reconciler = _setup()
        context.record_message("alice", at=clock.now)
        assert reconciler.passive_signals(exclude=["Alice"]) == []


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_discover_adds_confirmed_only(self):
        state, _, _, _, reconciler = _setup(live=["alice"])
        result = await reconciler.discover(["alice", "bob"])
        assert result.live == {"alice"}
        assert state.get_active_streams() == ["alice"]

    @pytest.mark.asyncio
    async def test_discover_failure_changes_nothing(self):
        state, _, source, _, reconciler = _setup()
        source.fail = True
        result = await reconciler.discover(["alice"])
        assert result.lookup_failed is True
        assert len(state) == 0

    @pytest.mark.asyncio
    async def test_fallback_checks_passive_channels(self):
        state, context, source, clock, reconciler = _setup(live=["alice"])
        context.record_message("alice", at=clock.now - 10)
        result = await reconciler.fallback_discovery()
        assert source.calls == [{"alice"}]
        assert result.live == {"alice"}
        assert state.get_active_streams() == ["alice"]

    @pytest.mark.asyncio
    async def test_fallback_without_signals_skips_lookup(self):
        _, _, source, _, reconciler = _setup(live=["alice"])
        result = await reconciler.fallback_discovery()
        assert result.live_count == 0
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_fallback_noop_when_state_nonempty(self):
        _, context, source, clock, reconciler = _setup(active=["bob"], live=["alice"])
        context.record_message("alice", at=clock.now)
        result = await reconciler.fallback_discovery()
        assert result.live == {"bob"}
        assert source.calls == []


class TestAllowList:
    def test_passive_signals_skip_disallowed(self):
        _, context, _, clock, reconciler = _setup(allowed=["alice"])
        context.record_message("alice", at=clock.now)
        context.record_message("mallory", at=clock.now)
        assert reconciler.passive_signals() == ["alice"]

    @pytest.mark.asyncio
    async def test_discover_never_adds_disallowed(self):
        state, _, source, _, reconciler = _setup(live=["alice", "mallory"], allowed=["alice"])
        result = await reconciler.discover(["alice", "Mallory"])
        assert source.calls == [{"alice"}]
        assert result.live == {"alice"}
        assert state.get_active_streams() == ["alice"]

    @pytest.mark.asyncio
    async def test_discover_only_disallowed_skips_lookup(self):
        state, _, source, _, reconciler = _setup(live=["mallory"], allowed=["alice"])
        result = await reconciler.discover(["mallory"])
        assert result.live_count == 0
        assert source.calls == []
        assert len(state) == 0

    @pytest.mark.asyncio
    async def test_fallback_ignores_disallowed_chat(self):
        state, context, source, clock, reconciler = _setup(live=["mallory"], allowed=["alice"])
        context.record_message("mallory", at=clock.now - 5)
        result = await reconciler.fallback_discovery()
        assert result.live_count == 0
        assert source.calls == []
        assert len(state) == 0
