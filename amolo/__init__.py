"""
AMOLO.AI: chat relay to a hosted completion API

Buffered and streamed chat completions behind per-client admission control.
"""

__version__ = "1.0.0"
__author__ = "AMOLO.AI Contributors"

from .exceptions import ServiceError, ErrorKind
from .models import ChatMessage, ChatRequest, CompletionResult, StreamChunk

__all__ = [
    "ServiceError",
    "ErrorKind",
    "ChatMessage",
    "ChatRequest",
    "CompletionResult",
    "StreamChunk",
    "__version__",
]
