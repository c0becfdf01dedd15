"""Collapse a flushed batch into one message."""
from datetime import datetime

from conversation_gate.core.models import BatchEntry, ConversationMessage

BATCHED_ID_SUFFIX = ":batched"


def merge_entries(
    entries: list[BatchEntry],
    template: ConversationMessage,
    window_ms: int,
) -> ConversationMessage:
    """
    Merge batch entries into a single message shaped like *template*.

    Content parts are concatenated in arrival order. Everything else is
    copied from the template except the ID (suffixed with ``:batched``),
    the creation time and the metadata, which gains the batch provenance
    fields. Neither the entries nor the template are modified.

    Args:
        entries: Flushed batch entries, oldest first
        template: The message that triggered the flush
        window_ms: Quiet window the batch was collected under

    Returns:
        The merged message
    """
    parts = [dict(part) for entry in entries for part in entry.content.parts]
    metadata = {
        **template.content.metadata,
        "batched": True,
        "batch_window_ms": window_ms,
        "original_message_ids": [entry.id for entry in entries],
    }
    content = template.content.model_copy(update={"parts": parts, "metadata": metadata})

    return template.model_copy(
        update={
            "id": f"{template.id}{BATCHED_ID_SUFFIX}",
            "created_at": datetime.now(),
            "content": content,
        }
    )
