"""Unit tests for the upstream client adapter."""

import asyncio

import httpx
import pytest

from amolo.exceptions import AuthError, ConfigurationError, RateLimited, UpstreamUnavailable
from amolo.models import ChatMessage, StreamChunk
from amolo.upstream import SAMPLING_PARAMETERS

from .conftest import ScriptedBody, completion_response, sse_body

CONVERSATION = [
    ChatMessage(role="system", content="be brief"),
    ChatMessage(role="user", content="hello"),
]


async def _collect(stream):
    chunks = [chunk async for chunk in stream.chunks()]
    await stream.aclose()
    return chunks


class TestBufferedMode:

    def test_complete_sends_one_request(self, provider, make_upstream):
        upstream = make_upstream()
        result = asyncio.run(upstream.complete("gpt-4o-mini", CONVERSATION))

        assert result.content == "hi there"
        assert result.usage.total_tokens == 15
        assert provider.calls == 1

        request = provider.requests[0]
        assert request.headers["Authorization"] == "Bearer test-key"
        payload = provider.last_payload()
        assert payload["model"] == "gpt-4o-mini"
        assert payload["messages"] == [m.model_dump() for m in CONVERSATION]
        for name, value in SAMPLING_PARAMETERS.items():
            assert payload[name] == value
        assert "stream" not in payload

    def test_missing_api_key_fails_before_network(self, provider, make_upstream):
        upstream = make_upstream(api_key=None)
        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(upstream.complete("gpt-4o-mini", CONVERSATION))
        assert "OPENAI_API_KEY" in exc_info.value.message
        assert provider.calls == 0

    @pytest.mark.parametrize("status, error_type", [
        (401, AuthError),
        (429, RateLimited),
        (503, UpstreamUnavailable),
    ])
    def test_provider_errors_are_not_retried(self, provider, make_upstream, status, error_type):
        provider.responder = lambda request: httpx.Response(status, json={"error": {"message": "x"}})
        with pytest.raises(error_type):
            asyncio.run(make_upstream().complete("gpt-4o-mini", CONVERSATION))
        assert provider.calls == 1

    def test_transport_failure(self, provider, make_upstream):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider.responder = refuse
        with pytest.raises(UpstreamUnavailable):
            asyncio.run(make_upstream().complete("gpt-4o-mini", CONVERSATION))
        assert provider.calls == 1

    def test_slow_provider_times_out(self, make_upstream):
        async def slow(request):
            await asyncio.sleep(1)
            return completion_response("late")

        upstream = make_upstream(timeout=0.05)
        upstream._transport = httpx.MockTransport(slow)
        with pytest.raises(UpstreamUnavailable) as exc_info:
            asyncio.run(upstream.complete("gpt-4o-mini", CONVERSATION))
        assert "timed out" in exc_info.value.message


class TestStreamingMode:

    def test_stream_yields_deltas_in_order(self, provider, make_upstream):
        provider.responder = lambda request: httpx.Response(200, content=sse_body(None, "Hel", "lo", "!"))

        async def run():
            stream = await make_upstream().open_stream("gpt-4o-mini", CONVERSATION)
            return stream, await _collect(stream)

        stream, chunks = asyncio.run(run())
        assert [c.delta_content for c in chunks if not c.done] == ["", "Hel", "lo", "!"]
        assert chunks[-1] == StreamChunk(done=True)
        assert stream.closed
        assert provider.last_payload()["stream"] is True

    def test_stream_without_done_marker_still_terminates(self, provider, make_upstream):
        provider.responder = lambda request: httpx.Response(200, content=sse_body("a", done=False))

        async def run():
            stream = await make_upstream().open_stream("gpt-4o-mini", CONVERSATION)
            return await _collect(stream)

        chunks = asyncio.run(run())
        assert chunks == [StreamChunk(delta_content="a"), StreamChunk(done=True)]

    def test_open_stream_error_status(self, provider, make_upstream):
        body = ScriptedBody(b'{"error": {"message": "bad key"}}')
        provider.responder = lambda request: httpx.Response(401, stream=body)

        with pytest.raises(AuthError):
            asyncio.run(make_upstream().open_stream("gpt-4o-mini", CONVERSATION))
        assert body.closed

    def test_open_stream_missing_api_key(self, provider, make_upstream):
        with pytest.raises(ConfigurationError):
            asyncio.run(make_upstream(api_key=None).open_stream("gpt-4o-mini", CONVERSATION))
        assert provider.calls == 0

    def test_mid_stream_transport_failure(self, provider, make_upstream):
        async def body():
            yield b'data: {"choices": [{"delta": {"content": "partial"}}]}\n\n'
            raise httpx.ReadError("connection reset")

        provider.responder = lambda request: httpx.Response(200, content=body())

        async def run():
            stream = await make_upstream().open_stream("gpt-4o-mini", CONVERSATION)
            received = []
            try:
                async for chunk in stream.chunks():
                    received.append(chunk)
            finally:
                await stream.aclose()
            return received

        with pytest.raises(UpstreamUnavailable):
            asyncio.run(run())
