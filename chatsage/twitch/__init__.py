"""Twitch Helix API client, the authoritative liveness source."""
