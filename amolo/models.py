"""
Data models for the chat relay API
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional, Literal


class ChatMessage(BaseModel):
    """A single role-tagged conversation message"""
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Body of POST /api/chat and POST /api/chat/stream"""
    messages: List[ChatMessage]
    model: Optional[str] = Field(default=None, min_length=1)


class CompletionRequest(BaseModel):
    """Outbound request sent to the completion provider"""
    model: str
    messages: List[ChatMessage]
    temperature: float
    max_tokens: int
    top_p: float
    frequency_penalty: float
    presence_penalty: float
    stream: bool = False


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResult(BaseModel):
    """Buffered completion returned by the provider"""
    content: str
    usage: Usage = Field(default_factory=Usage)


class StreamChunk(BaseModel):
    """One incremental frame of a streamed completion"""
    delta_content: str = ""
    done: bool = False


class ChatResponse(BaseModel):
    success: bool = True
    message: str
    usage: Usage


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    service: str
