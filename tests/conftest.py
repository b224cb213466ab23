"""
Shared fixtures: settings, a scripted provider and a controllable clock.
"""

import asyncio
import json
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from amolo.api import create_app
from amolo.models import ChatMessage
from amolo.rate_limit import FixedWindowRateLimiter
from amolo.settings import Settings
from amolo.upstream import UpstreamClient

PROVIDER_URL = "https://provider.test/v1/chat/completions"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedBody(httpx.AsyncByteStream):
    """Provider response body that records being closed and can stall after its frames"""

    def __init__(self, *frames: bytes, stall: bool = False):
        self.frames = frames
        self.stall = stall
        self.closed = False

    async def __aiter__(self):
        for frame in self.frames:
            yield frame
        if self.stall:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider:
    """Records outbound requests and answers with a scripted response"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda request: completion_response("hi there")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def last_payload(self) -> dict:
        return json.loads(self.requests[-1].content)


def completion_response(content: Optional[str], usage: Optional[dict] = None) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
            "usage": usage or {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        },
    )


def sse_body(*deltas: Optional[str], done: bool = True) -> bytes:
    lines = []
    for delta in deltas:
        frame = {"choices": [{"index": 0, "delta": {} if delta is None else {"content": delta}}]}
        lines.append(f"data: {json.dumps(frame)}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, openai_api_key="test-key", openai_api_url=PROVIDER_URL)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_upstream(provider):
    def _make(api_key: Optional[str] = "test-key", timeout: float = 60.0) -> UpstreamClient:
        return UpstreamClient(api_key=api_key, url=PROVIDER_URL, timeout=timeout,
                              transport=httpx.MockTransport(provider))
    return _make


@pytest.fixture
def make_client(settings, make_upstream, clock):
    def _make(settings: Settings = settings, max_requests: int = 100, **kwargs) -> TestClient:
        limiter = FixedWindowRateLimiter(max_requests=max_requests, window_seconds=900, clock=clock)
        app = create_app(settings, upstream=make_upstream(api_key=settings.openai_api_key), rate_limiter=limiter)
        return TestClient(app, **kwargs)
    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def user_messages() -> List[ChatMessage]:
    return [ChatMessage(role="user", content="hello")]
