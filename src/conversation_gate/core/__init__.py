"""Core models, settings and errors."""

from conversation_gate.core.errors import BatchEntryDecodeError, GateConfigurationError
from conversation_gate.core.models import (
    AbortReason,
    BatchEntry,
    ConversationMessage,
    GateOutcome,
    MessageContent,
)
from conversation_gate.core.settings import GateSettings

__all__ = [
    "AbortReason",
    "BatchEntry",
    "BatchEntryDecodeError",
    "ConversationMessage",
    "GateConfigurationError",
    "GateOutcome",
    "GateSettings",
    "MessageContent",
]
