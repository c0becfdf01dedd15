"""
Batch Window Coordinator - Collapses rapid-fire messages across workers.

Several stateless workers may receive messages for the same conversation at
nearly the same time. Instead of each one forwarding its message to the
agent, they coordinate through Redis so that exactly one of them forwards a
single merged message.

The flow for every request works as follows:
1. The message is appended to the conversation's batch list
   (``<prefix>:<conversation key>``) and the list's TTL is refreshed
2. The request tries to create the batch lock (``<list key>:lock``) with SET NX
3. If the lock already exists, the request refreshes its TTL and aborts with
   ``batching-pending``: its message is recorded and will be merged by the leader
4. The leader polls the tail of the list until no new entry has arrived for
   ``window_ms``, then reads and deletes the list, releases the lock and
   returns one merged message in place of the batched originals

If the leader dies, the lock expires on its own after ``3 * window_ms`` and a
later request becomes leader for whatever is still in the list.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from conversation_gate.core.errors import BatchEntryDecodeError
from conversation_gate.core.models import AbortReason, BatchEntry, ConversationMessage, GateOutcome
from conversation_gate.core.settings import (
    DEFAULT_BATCH_KEY_PREFIX,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_WINDOW_MS,
    TTL_WINDOW_MULTIPLIER,
    normalize_key_prefix,
)
from conversation_gate.gating.identity import (
    ConversationKeyResolver,
    ResolverContext,
    find_last_user_message,
    resolve_conversation_key,
)
from conversation_gate.gating.merger import merge_entries
from conversation_gate.store.redis_store import CoordinationStore, RedisCoordinationStore

logger = logging.getLogger(__name__)

LOCK_MARKER = "1"

Clock = Callable[[], int]
Sleep = Callable[[float], Awaitable[None]]


def wall_clock_ms() -> int:
    """Epoch milliseconds. Wall clock so that separate hosts agree."""
    return int(time.time() * 1000)


class BatchWindowCoordinator:
    """
    Elects one leader per conversation and merges everything it collects.

    There is no leader identity beyond "whoever created the lock", and the
    leader does not re-check the lock while polling. With a lock TTL of three
    windows and a poll interval well below the window this is safe in
    practice; a stricter fencing scheme is out of scope.

    Attributes:
        window_ms: Quiet period that closes a batch
        poll_interval_ms: Upper bound on a single sleep while waiting
        key_prefix: Namespace for batch lists and locks
    """

    name = "redis-batching-input"

    def __init__(
        self,
        store: Optional[CoordinationStore] = None,
        redis_url: Optional[str] = None,
        window_ms: int = DEFAULT_WINDOW_MS,
        key_prefix: str = DEFAULT_BATCH_KEY_PREFIX,
        resolver: Optional[ConversationKeyResolver] = None,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        clock: Clock = wall_clock_ms,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Coordination store. A Redis store is built when omitted.
            redis_url: Redis connection string used when no store is given.
                Falls back to the REDIS_URL environment variable.
            window_ms: Sliding quiet window in milliseconds
            key_prefix: Key namespace (useful when running several agents)
            resolver: Custom conversation key resolver
            poll_interval_ms: Maximum sleep between tail checks
            clock: Returns the current time in epoch milliseconds
            sleep: Async sleep taking seconds

        Raises:
            ValueError: If window_ms or poll_interval_ms is not positive
            GateConfigurationError: If a Redis store is needed and no URL is set
        """
        if window_ms <= 0 or poll_interval_ms <= 0:
            raise ValueError("window_ms and poll_interval_ms must be positive")

        self._store = store if store is not None else RedisCoordinationStore(redis_url)
        self.window_ms = window_ms
        self.poll_interval_ms = poll_interval_ms
        self.key_prefix = normalize_key_prefix(key_prefix)
        self._resolver = resolver
        self._clock = clock
        self._sleep = sleep

        logger.debug(
            f"BatchWindowCoordinator initialized: window_ms={window_ms}, "
            f"poll_interval_ms={poll_interval_ms}, key_prefix={self.key_prefix}"
        )

    @property
    def ttl_ms(self) -> int:
        return self.window_ms * TTL_WINDOW_MULTIPLIER

    def build_list_key(self, conversation_key: str) -> str:
        return f"{self.key_prefix}:{conversation_key}"

    def build_lock_key(self, conversation_key: str) -> str:
        return f"{self.build_list_key(conversation_key)}:lock"

    async def process_input(
        self,
        messages: list[ConversationMessage],
        context: Optional[ResolverContext] = None,
    ) -> GateOutcome:
        """
        Record the latest user message and either lead the batch or abort.

        Args:
            messages: Ordered messages of the current request
            context: Opaque context handed to a custom resolver

        Returns:
            Forward outcome with the merged message (leader), the unchanged
            input (no conversation key, or the batch was already flushed), or
            a ``batching-pending`` abort (another request leads the batch)
        """
        if not messages:
            return GateOutcome.forward(messages)

        last_user_message = find_last_user_message(messages)
        if last_user_message is None:
            return GateOutcome.forward(messages)

        await self._store.ensure_connected()

        conversation_key = resolve_conversation_key(last_user_message, self._resolver, context)
        if not conversation_key:
            return GateOutcome.forward(messages)

        list_key = self.build_list_key(conversation_key)
        lock_key = self.build_lock_key(conversation_key)

        await self._enqueue(list_key, last_user_message)

        won = await self._store.conditional_set(lock_key, LOCK_MARKER, self.ttl_ms)
        if not won:
            # Keep the active leader's lock alive while messages keep coming
            await self._store.set_expiry(lock_key, self.ttl_ms)
            logger.debug(f"Batch for {conversation_key} already has a leader, message {last_user_message.id} queued")
            return GateOutcome.abort(
                AbortReason.BATCHING_PENDING,
                detail=f"Message {last_user_message.id} queued for conversation {conversation_key}",
            )

        logger.debug(f"Message {last_user_message.id} leads batch for {conversation_key}")

        try:
            await self._await_quiet_window(list_key)
            entries = await self._flush_batch(list_key)
            await self._store.delete(lock_key)
        except BaseException:
            await self._release_lock_after_failure(lock_key)
            raise

        if not entries:
            logger.debug(f"Batch for {conversation_key} was already flushed, forwarding input unchanged")
            return GateOutcome.forward(messages)

        merged = merge_entries(entries, last_user_message, self.window_ms)
        batched_ids = {entry.id for entry in entries}
        remaining = [message for message in messages if message.id not in batched_ids]

        logger.info(f"Flushed batch for {conversation_key}: {len(entries)} message(s) merged into {merged.id}")
        return GateOutcome.forward([*remaining, merged])

    async def coordinate(
        self,
        messages: list[ConversationMessage],
        context: Optional[ResolverContext] = None,
    ) -> GateOutcome:
        """Same as :meth:`process_input`."""
        return await self.process_input(messages, context)

    async def _enqueue(self, list_key: str, message: ConversationMessage) -> None:
        entry = BatchEntry(id=message.id, content=message.content, enqueued_at=self._clock())
        await self._store.append(list_key, entry.model_dump_json())
        await self._store.set_expiry(list_key, self.ttl_ms)

    def _decode(self, list_key: str, raw: str) -> BatchEntry:
        try:
            return BatchEntry.model_validate_json(raw)
        except ValidationError as e:
            raise BatchEntryDecodeError(list_key, raw) from e

    async def _await_quiet_window(self, list_key: str) -> None:
        """Block until the newest entry is at least window_ms old, or the list is gone."""
        while True:
            last_raw = await self._store.read_last(list_key)
            if not last_raw:
                return

            last_entry = self._decode(list_key, last_raw)
            remaining = self.window_ms - (self._clock() - last_entry.enqueued_at)
            if remaining <= 0:
                return

            await self._sleep(min(remaining, self.poll_interval_ms) / 1000)

    async def _flush_batch(self, list_key: str) -> list[BatchEntry]:
        """Read, decode, then clear the batch list. Undecodable entries are logged and dropped."""
        raw_entries = await self._store.read_all(list_key)

        entries = []
        for raw in raw_entries:
            try:
                entries.append(self._decode(list_key, raw))
            except BatchEntryDecodeError as e:
                logger.error(f"Skipping entry during flush: {e}")

        await self._store.delete(list_key)
        return entries

    async def _release_lock_after_failure(self, lock_key: str) -> None:
        try:
            await self._store.delete(lock_key)
        except Exception as e:
            logger.error(f"Could not release batch lock {lock_key} after failure: {e}")

    def __repr__(self) -> str:
        return (
            f"BatchWindowCoordinator(window_ms={self.window_ms}, "
            f"poll_interval_ms={self.poll_interval_ms}, "
            f"key_prefix={self.key_prefix!r})"
        )
