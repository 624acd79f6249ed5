"""KV long-poll watching: backoff policy, sessions and the poll engine."""

from .backoff import BackoffPolicy, next_backoff_ms
from .engine import KvClient, LongPollConfig, LongPollEngine, SnapshotCallback
from .session import LongPollSession, PollState

__all__ = [
    "BackoffPolicy",
    "next_backoff_ms",
    "KvClient",
    "LongPollConfig",
    "LongPollEngine",
    "SnapshotCallback",
    "LongPollSession",
    "PollState",
]
