"""
Stop Gate - Silences a conversation while its stop flag is set in Redis.

Operators (or a human taking over a chat) set ``<prefix>:<conversation key>``
to a truthy value; while it is set, every inbound message for that
conversation aborts the pipeline before any other gate runs.
"""
import logging
from typing import Callable, Optional

from conversation_gate.core.models import AbortReason, ConversationMessage, GateOutcome
from conversation_gate.core.settings import DEFAULT_STOP_KEY_PREFIX, normalize_key_prefix
from conversation_gate.gating.identity import (
    ConversationKeyResolver,
    ResolverContext,
    find_last_user_message,
    resolve_conversation_key,
)
from conversation_gate.store.redis_store import CoordinationStore, RedisCoordinationStore

logger = logging.getLogger(__name__)

StopPredicate = Callable[[Optional[str]], bool]


def default_is_stopped(value: Optional[str]) -> bool:
    """Any non-empty value other than "0" or "false" (any case) means stopped."""
    return value is not None and value != "" and value != "0" and value.lower() != "false"


class StopGate:
    """
    Aborts the pipeline when a conversation's stop flag is set.

    The only store access is a single read of the flag. Store errors
    propagate to the caller.
    """

    name = "redis-stop-input"

    def __init__(
        self,
        store: Optional[CoordinationStore] = None,
        redis_url: Optional[str] = None,
        key_prefix: str = DEFAULT_STOP_KEY_PREFIX,
        resolver: Optional[ConversationKeyResolver] = None,
        is_stopped: Optional[StopPredicate] = None,
    ):
        self._store = store if store is not None else RedisCoordinationStore(redis_url)
        self.key_prefix = normalize_key_prefix(key_prefix)
        self._resolver = resolver
        self._is_stopped = is_stopped or default_is_stopped

    def build_stop_key(self, conversation_key: str) -> str:
        return f"{self.key_prefix}:{conversation_key}"

    async def process_input(
        self,
        messages: list[ConversationMessage],
        context: Optional[ResolverContext] = None,
    ) -> GateOutcome:
        if not messages:
            return GateOutcome.forward(messages)

        last_user_message = find_last_user_message(messages)
        if last_user_message is None:
            return GateOutcome.forward(messages)

        await self._store.ensure_connected()

        conversation_key = resolve_conversation_key(last_user_message, self._resolver, context)
        if not conversation_key:
            return GateOutcome.forward(messages)

        value = await self._store.get(self.build_stop_key(conversation_key))
        if self._is_stopped(value):
            logger.info(f"Stop flag active for {conversation_key} (value={value!r}), aborting")
            return GateOutcome.abort(
                AbortReason.STOP_ACTIVE,
                detail=f"Stop flag is set for conversation {conversation_key}",
            )

        return GateOutcome.forward(messages)

    def __repr__(self) -> str:
        return f"StopGate(key_prefix={self.key_prefix!r})"
