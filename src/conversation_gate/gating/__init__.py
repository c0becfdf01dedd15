"""Input gates (stop flag, batch window) and the pipeline that chains them."""

from conversation_gate.gating.batching import BatchWindowCoordinator
from conversation_gate.gating.identity import find_last_user_message, resolve_conversation_key
from conversation_gate.gating.merger import merge_entries
from conversation_gate.gating.pipeline import InputPipeline
from conversation_gate.gating.stop_gate import StopGate, default_is_stopped

__all__ = [
    "BatchWindowCoordinator",
    "InputPipeline",
    "StopGate",
    "default_is_stopped",
    "find_last_user_message",
    "merge_entries",
    "resolve_conversation_key",
]
