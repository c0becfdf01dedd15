"""
Conversation key resolution shared by the stop gate and the batch coordinator.

Priority chain, first non-empty value wins:
1. Custom resolver function (when configured)
2. Thread ID
3. Resource ID
4. ``userId`` (or ``user_id``) inside the message metadata

When nothing resolves, both gates let the message through untouched.
"""
from typing import Any, Callable, Mapping, Optional

from conversation_gate.core.models import ConversationMessage

ResolverContext = Mapping[str, Any]
ConversationKeyResolver = Callable[[ConversationMessage, Optional[ResolverContext]], Optional[str]]

METADATA_USER_ID_FIELDS = ("userId", "user_id")


def _non_empty(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def resolve_conversation_key(
    message: ConversationMessage,
    resolver: Optional[ConversationKeyResolver] = None,
    context: Optional[ResolverContext] = None,
) -> Optional[str]:
    """
    Derive the conversation key for *message*.

    Args:
        message: The message to identify (normally the last user message)
        resolver: Optional custom resolver tried before the built-in chain
        context: Opaque context handed to the custom resolver

    Returns:
        The conversation key, or None if no identifier is available
    """
    if resolver is not None:
        key = _non_empty(resolver(message, context))
        if key:
            return key

    for candidate in (message.thread_id, message.resource_id):
        key = _non_empty(candidate)
        if key:
            return key

    metadata = message.content.metadata or {}
    for field in METADATA_USER_ID_FIELDS:
        key = _non_empty(metadata.get(field))
        if key:
            return key
    return None


def find_last_user_message(messages: list[ConversationMessage]) -> Optional[ConversationMessage]:
    """Return the most recent message with the ``user`` role."""
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None
