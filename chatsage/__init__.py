"""ChatSage stream-liveness core.

Decides whether any monitored Twitch channel is live and keeps the Cloud Run
instance warm with self-scheduled Cloud Tasks pings while one is.
"""
