"""
Client adapter for the external chat completion provider
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

import httpx

from .exceptions import ConfigurationError, UpstreamUnavailable
from .models import ChatMessage, CompletionRequest, CompletionResult, StreamChunk
from .translator import (
    translate_error_status,
    translate_response,
    translate_stream_line,
    translate_transport_error,
)

logger = logging.getLogger(__name__)

# Sampling parameters are fixed server-side; only the model may be overridden
SAMPLING_PARAMETERS = {
    "temperature": 0.7,
    "max_tokens": 1000,
    "top_p": 1.0,
    "frequency_penalty": 0.0,
    "presence_penalty": 0.0,
}

MISSING_API_KEY = "Server configuration error: OPENAI_API_KEY is not set"


class UpstreamStream:
    """An open provider event stream owned by a single client request"""

    def __init__(self, response: httpx.Response):
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        """Yield provider deltas in arrival order, ending with a ``done`` chunk"""
        try:
            async for line in self._response.aiter_lines():
                chunk = translate_stream_line(line)
                if chunk is None:
                    continue
                yield chunk
                if chunk.done:
                    return
        except httpx.RequestError as e:
            logger.warning(f"Provider stream failed: {e!r}")
            raise translate_transport_error(e) from e
        # Provider closed the body without the terminal marker
        yield StreamChunk(done=True)

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


class UpstreamClient:
    """
    Issues exactly one provider call per client request, never retrying.

    The httpx client is created on first use so that a missing credential is
    reported before any connection is attempted.
    """

    def __init__(
        self,
        api_key: Optional[str],
        url: str = "https://api.openai.com/v1/chat/completions",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(MISSING_API_KEY)
        return self.api_key

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_request(self, model: str, conversation: List[ChatMessage], stream: bool = False) -> CompletionRequest:
        return CompletionRequest(
            model=model,
            messages=conversation,
            stream=stream,
            **SAMPLING_PARAMETERS,
        )

    async def complete(self, model: str, conversation: List[ChatMessage]) -> CompletionResult:
        """Send one buffered completion request and translate the outcome"""
        api_key = self._require_api_key()
        payload = self.build_request(model, conversation).model_dump(exclude={"stream"})

        logger.debug(f"Completion request: model={model}, messages={len(conversation)}")
        try:
            # Bound the whole exchange, not just each socket operation
            response = await asyncio.wait_for(
                self._get_client().post(self.url, json=payload, headers=self._headers(api_key)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Provider request exceeded {self.timeout}s")
            raise UpstreamUnavailable("AI service request timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"Provider request failed: {e!r}")
            raise translate_transport_error(e) from e

        return translate_response(response.status_code, response.content)

    async def open_stream(self, model: str, conversation: List[ChatMessage]) -> UpstreamStream:
        """
        Open a streaming completion.

        Errors before the provider starts streaming are raised here, while the
        client response has not been committed yet.
        """
        api_key = self._require_api_key()
        payload = self.build_request(model, conversation, stream=True).model_dump()

        logger.debug(f"Streaming request: model={model}, messages={len(conversation)}")
        client = self._get_client()
        request = client.build_request("POST", self.url, json=payload, headers=self._headers(api_key))
        try:
            response = await client.send(request, stream=True)
        except httpx.RequestError as e:
            logger.warning(f"Provider stream request failed: {e!r}")
            raise translate_transport_error(e) from e

        if response.status_code != 200:
            try:
                body = await response.aread()
            except httpx.RequestError:
                body = b""
            finally:
                await response.aclose()
            error = translate_error_status(response.status_code, body)
            logger.warning(f"Provider refused stream with {response.status_code}: {error.message}")
            raise error

        return UpstreamStream(response)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
