"""Coordination store used by the gates."""

from conversation_gate.store.redis_store import CoordinationStore, RedisCoordinationStore

__all__ = [
    "CoordinationStore",
    "RedisCoordinationStore",
]
