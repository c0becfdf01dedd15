"""
Input pipeline - Runs gates in order before messages reach the agent.

The canonical chain is the stop gate followed by the batch coordinator, so a
silenced conversation never touches its batch list.
"""
import logging
from typing import Optional, Protocol, Sequence

from conversation_gate.core.models import ConversationMessage, GateOutcome
from conversation_gate.core.settings import GateSettings
from conversation_gate.gating.batching import BatchWindowCoordinator
from conversation_gate.gating.identity import ConversationKeyResolver, ResolverContext
from conversation_gate.gating.stop_gate import StopGate, StopPredicate
from conversation_gate.store.redis_store import CoordinationStore, RedisCoordinationStore

logger = logging.getLogger(__name__)


class InputProcessor(Protocol):
    name: str

    async def process_input(
        self,
        messages: list[ConversationMessage],
        context: Optional[ResolverContext] = None,
    ) -> GateOutcome: ...


class InputPipeline:
    """Runs processors in order; the first abort ends the run."""

    def __init__(self, processors: Sequence[InputProcessor]):
        self.processors = list(processors)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[GateSettings] = None,
        store: Optional[CoordinationStore] = None,
        resolver: Optional[ConversationKeyResolver] = None,
        is_stopped: Optional[StopPredicate] = None,
    ) -> "InputPipeline":
        """
        Build the stop gate -> batch coordinator chain over one shared store.

        Args:
            settings: Gate settings (read from the environment when omitted)
            store: Store to share between gates (a Redis store is built when omitted)
            resolver: Custom conversation key resolver used by both gates
            is_stopped: Custom stop predicate

        Returns:
            The configured pipeline
        """
        settings = settings or GateSettings.from_env()
        store = store if store is not None else RedisCoordinationStore.from_settings(settings)
        return cls([
            StopGate(
                store=store,
                key_prefix=settings.stop_key_prefix,
                resolver=resolver,
                is_stopped=is_stopped,
            ),
            BatchWindowCoordinator(
                store=store,
                window_ms=settings.window_ms,
                key_prefix=settings.batch_key_prefix,
                resolver=resolver,
                poll_interval_ms=settings.poll_interval_ms,
            ),
        ])

    async def run(
        self,
        messages: list[ConversationMessage],
        context: Optional[ResolverContext] = None,
    ) -> GateOutcome:
        outcome = GateOutcome.forward(messages)
        for processor in self.processors:
            outcome = await processor.process_input(outcome.messages, context)
            if outcome.aborted:
                logger.debug(f"{processor.name} aborted: {outcome.reason.value}")
                return outcome
        return outcome

    def __repr__(self) -> str:
        names = ", ".join(p.name for p in self.processors)
        return f"InputPipeline([{names}])"
