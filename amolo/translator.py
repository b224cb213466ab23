"""
Translation of provider responses into service results and errors
"""

import json
import logging
from typing import Any, Optional, Union

import httpx
import pydantic

from .exceptions import (
    AuthError,
    ProtocolError,
    ProviderError,
    RateLimited,
    ServiceError,
    UpstreamUnavailable,
)
from .models import CompletionResult, StreamChunk, Usage

logger = logging.getLogger(__name__)

INVALID_API_KEY = "Invalid API key"
PROVIDER_RATE_LIMITED = "Rate limit exceeded. Please try again later."
UPSTREAM_UNAVAILABLE = "AI service is temporarily unavailable"
INVALID_RESPONSE = "Invalid response from AI service"
STREAM_DONE = "[DONE]"


def _decode_json(body: Union[bytes, str]) -> Any:
    try:
        return json.loads(body)
    except (ValueError, TypeError):
        return None


def provider_error_message(body: Union[bytes, str]) -> Optional[str]:
    """Extract the provider's message from an ``{"error": {"message": ...}}`` body"""
    data = _decode_json(body)
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return None


def translate_error_status(status_code: int, body: Union[bytes, str] = b"") -> ServiceError:
    """Map a non-200 provider status to exactly one ServiceError"""
    if status_code == 401:
        return AuthError(INVALID_API_KEY)
    if status_code == 429:
        return RateLimited(PROVIDER_RATE_LIMITED)
    if status_code >= 500:
        return UpstreamUnavailable(UPSTREAM_UNAVAILABLE)
    if 400 <= status_code < 500:
        message = provider_error_message(body) or f"AI service rejected the request (status {status_code})"
        return ProviderError(message, status_code=status_code)
    # 1xx, other 2xx and 3xx cannot be relayed as-is
    return ProtocolError(INVALID_RESPONSE)


def translate_transport_error(exc: Exception) -> UpstreamUnavailable:
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamUnavailable("AI service request timed out")
    return UpstreamUnavailable(UPSTREAM_UNAVAILABLE)


def translate_response(status_code: int, body: Union[bytes, str]) -> CompletionResult:
    """
    Turn a buffered provider response into a CompletionResult.

    Raises the matching ServiceError for every other outcome.
    """
    if status_code != 200:
        error = translate_error_status(status_code, body)
        logger.warning(f"Provider returned {status_code}: {error.message}")
        raise error

    data = _decode_json(body)
    try:
        message = data["choices"][0]["message"]
        content = message.get("content")
        usage = Usage.model_validate(data.get("usage") or {})
    except (KeyError, IndexError, TypeError, AttributeError, pydantic.ValidationError) as e:
        logger.warning(f"Malformed provider body: {e!r}")
        raise ProtocolError(INVALID_RESPONSE) from e

    if content is None:
        content = ""
    if not isinstance(content, str):
        raise ProtocolError(INVALID_RESPONSE)
    return CompletionResult(content=content, usage=usage)


def translate_stream_line(line: str) -> Optional[StreamChunk]:
    """
    Parse one line of the provider's event stream.

    Returns None for lines that carry nothing (blank lines, comments, other
    fields), a ``done`` chunk for the terminal marker, and a delta otherwise.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload:
        return None
    if payload == STREAM_DONE:
        return StreamChunk(done=True)

    data = _decode_json(payload)
    if not isinstance(data, dict):
        raise ProtocolError(INVALID_RESPONSE)
    if "error" in data:
        message = provider_error_message(payload) or UPSTREAM_UNAVAILABLE
        raise UpstreamUnavailable(message)

    try:
        choices = data["choices"]
        delta = choices[0].get("delta") if choices else None
    except (KeyError, TypeError, AttributeError) as e:
        raise ProtocolError(INVALID_RESPONSE) from e
    content = delta.get("content") if isinstance(delta, dict) else None
    if content is not None and not isinstance(content, str):
        raise ProtocolError(INVALID_RESPONSE)
    return StreamChunk(delta_content=content or "")
