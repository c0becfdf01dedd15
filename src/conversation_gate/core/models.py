"""
Pydantic models for the conversation gate.

Covers the inbound message envelope, the entries kept in a conversation's
batch list, and the outcome every gate hands back to its caller.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageContent(BaseModel):
    """Body of a conversational message."""
    format: int = 2
    parts: list[dict[str, Any]] = Field(default_factory=list)  # e.g. {"type": "text", "text": "..."}
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    """A single message as it travels through the input pipeline."""
    id: str
    role: Literal["user", "assistant", "system", "tool"] = "user"
    created_at: datetime = Field(default_factory=datetime.now)
    thread_id: Optional[str] = None
    resource_id: Optional[str] = None
    content: MessageContent = Field(default_factory=MessageContent)

    @classmethod
    def from_text(cls, message_id: str, text: str, **fields: Any) -> "ConversationMessage":
        """Build a user message carrying one text part."""
        metadata = fields.pop("metadata", {})
        return cls(
            id=message_id,
            content=MessageContent(parts=[{"type": "text", "text": text}], metadata=metadata),
            **fields,
        )

    @property
    def text(self) -> str:
        """All text parts joined with newlines."""
        return "\n".join(
            part["text"] for part in self.content.parts
            if part.get("type") == "text" and isinstance(part.get("text"), str)
        )


class BatchEntry(BaseModel):
    """
    One message recorded in a conversation's batch list.

    Attributes:
        id: ID of the message this entry was created from
        content: The message content, stored as-is
        enqueued_at: Epoch milliseconds when the entry was appended
    """
    model_config = ConfigDict(frozen=True)

    id: str
    content: MessageContent
    enqueued_at: int


class AbortReason(str, Enum):
    """Why a gate told its caller not to forward anything now."""
    STOP_ACTIVE = "stop-active"  # Stop flag set for the conversation
    BATCHING_PENDING = "batching-pending"  # Another request is collecting the batch


class GateOutcome(BaseModel):
    """
    Result of running a gate: either forward the messages, or abort.

    An abort is expected control flow, not a failure. The caller should not
    forward anything for this request and should not retry it.
    """
    messages: list[ConversationMessage] = Field(default_factory=list)
    aborted: bool = False
    reason: Optional[AbortReason] = None
    detail: Optional[str] = None

    @classmethod
    def forward(cls, messages: list[ConversationMessage]) -> "GateOutcome":
        return cls(messages=messages)

    @classmethod
    def abort(
        cls,
        reason: AbortReason,
        messages: Optional[list[ConversationMessage]] = None,
        detail: Optional[str] = None,
    ) -> "GateOutcome":
        return cls(messages=messages or [], aborted=True, reason=reason, detail=detail)

    @property
    def forwarded(self) -> bool:
        return not self.aborted
