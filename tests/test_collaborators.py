"""Tests for the in-process collaborator implementations."""

from __future__ import annotations

from chatsage.collaborators import InMemoryChannelContext, SettingsChannelAllowList


class TestSettingsChannelAllowList:
    def test_allow_list_wins(self):
        allow = SettingsChannelAllowList(allowed=["alice"], monitored=["alice", "bob"])
        assert allow.is_channel_allowed("ALICE")
        assert not allow.is_channel_allowed("bob")

    def test_monitored_used_without_allow_list(self):
        allow = SettingsChannelAllowList(monitored=["bob"])
        assert allow.is_channel_allowed("#bob")
        assert not allow.is_channel_allowed("alice")

    def test_open_when_unconfigured(self):
        allow = SettingsChannelAllowList()
        assert allow.is_channel_allowed("anyone")
        assert not allow.is_channel_allowed("")


class TestInMemoryChannelContext:
    def test_message_age(self):
        now = [1000.0]
        ctx = InMemoryChannelContext(clock=lambda: now[0])
        assert ctx.most_recent_message_age("alice") is None
        ctx.record_message("#Alice")
        now[0] += 42
        assert ctx.most_recent_message_age("alice").total_seconds() == 42
        assert ctx.known_channels() == ["alice"]

    def test_older_message_does_not_rewind(self):
        now = [1000.0]
        ctx = InMemoryChannelContext(clock=lambda: now[0])
        ctx.record_message("alice", at=990.0)
        ctx.record_message("alice", at=900.0)
        assert ctx.most_recent_message_age("alice").total_seconds() == 10

    def test_metadata(self):
        ctx = InMemoryChannelContext()
        ctx.update_stream_metadata("alice", game="Chess")
        assert not ctx.has_live_metadata("alice")
        ctx.update_stream_metadata("alice", started_at="2026-01-01T00:00:00Z")
        assert ctx.has_live_metadata("alice")
        ctx.clear_cached_metadata("alice")
        assert not ctx.has_live_metadata("alice")
        assert ctx.channels_with_live_metadata() == []
