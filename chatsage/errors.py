"""Error taxonomy and result types for the liveness / keep-alive core.

Every failure path in the webhook, reconciliation and scheduling code maps to
one ErrorKind. Callers branch on the kind (or on the result objects below)
instead of catching and ignoring exceptions.

Contract:
- SIGNATURE_INVALID -> 403, no state mutation
- REPLAY_OR_DUPLICATE -> already acknowledged with 200, dropped silently
- AUTHORITATIVE_LOOKUP_FAILURE -> keep last known state for this cycle
- TASK_SCHEDULING_TRANSIENT -> bounded retry with backoff
- TASK_SCHEDULING_PERMANENT -> logged and surfaced, never retried
- PHANTOM_STATE_DETECTED -> not a failure, a corrective action (warning log)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "Admission",
    "AuthoritativeLookupError",
    "ChatSageError",
    "ConfigurationError",
    "ErrorKind",
    "PingOutcome",
    "ReconciliationResult",
    "ScheduleResult",
]


class ErrorKind(str, Enum):
    """Classification of liveness-core failures."""

    SIGNATURE_INVALID = "signature_invalid"
    REPLAY_OR_DUPLICATE = "replay_or_duplicate"
    AUTHORITATIVE_LOOKUP_FAILURE = "authoritative_lookup_failure"
    TASK_SCHEDULING_TRANSIENT = "task_scheduling_transient"
    TASK_SCHEDULING_PERMANENT = "task_scheduling_permanent"
    PHANTOM_STATE_DETECTED = "phantom_state_detected"
    CONFIGURATION = "configuration"


class ChatSageError(Exception):
    """Base exception carrying an ErrorKind."""

    def __init__(self, message: str, kind: ErrorKind) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class AuthoritativeLookupError(ChatSageError):
    """Helix user or stream lookup failed (transport, timeout or HTTP error)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.AUTHORITATIVE_LOOKUP_FAILURE)


class ConfigurationError(ChatSageError):
    """Required configuration for an outbound call is missing."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.CONFIGURATION)


class Admission(str, Enum):
    """Outcome of the replay / duplicate guard for one notification."""

    ADMITTED = "admitted"
    DUPLICATE = "duplicate"
    STALE = "stale"
    MALFORMED = "malformed"

    @property
    def admitted(self) -> bool:
        return self is Admission.ADMITTED


@dataclass
class ReconciliationResult:
    """Ground truth produced by one reconciliation pass.

    ``lookup_failed`` means the authoritative source could not be consulted;
    ``live`` then holds the last known local state, unchanged.
    """

    live: set[str] = field(default_factory=set)
    phantoms: set[str] = field(default_factory=set)
    lookup_failed: bool = False
    error: ErrorKind | None = None

    @property
    def live_count(self) -> int:
        return len(self.live)


@dataclass
class ScheduleResult:
    """Outcome of a create-task call (after retries)."""

    handle: str | None = None
    attempts: int = 0
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.handle is not None and self.error is None


class PingOutcome(str, Enum):
    """What a keep-alive ping decided."""

    IGNORED = "ignored"
    CONTINUED = "continued"
    GRACE = "grace"
    STOPPED = "stopped"
    INCONCLUSIVE = "inconclusive"
