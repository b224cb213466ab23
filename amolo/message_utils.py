"""
Helper functions for building the outbound conversation window
"""

from collections.abc import Sequence
from typing import Any, List

import pydantic

from .exceptions import ValidationError
from .models import ChatMessage

MAX_HISTORY_MESSAGES = 10
MESSAGES_REQUIRED = "Invalid request: messages array is required"


def _coerce_message(raw: Any) -> ChatMessage:
    if isinstance(raw, ChatMessage):
        return raw
    try:
        return ChatMessage.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid request: malformed message ({e.error_count()} errors)") from e


def build_conversation(
    messages: Any,
    system_prompt: str,
    max_history: int = MAX_HISTORY_MESSAGES,
) -> List[ChatMessage]:
    """
    Prepend the system directive to the most recent client messages.

    Only the last ``max_history`` messages are kept, in their original order.
    Raises ValidationError if ``messages`` is missing, not a sequence, or empty.
    """
    if messages is None or isinstance(messages, (str, bytes)) or not isinstance(messages, Sequence):
        raise ValidationError(MESSAGES_REQUIRED)
    if len(messages) == 0:
        raise ValidationError(MESSAGES_REQUIRED)

    history = [_coerce_message(m) for m in messages]
    if any(m.role == "system" for m in history):
        raise ValidationError("Invalid request: system messages are set by the server")

    window = history[-max_history:] if max_history > 0 else []
    return [ChatMessage(role="system", content=system_prompt)] + window
