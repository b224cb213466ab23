"""
Server-Sent Events relay from the provider stream to the client
"""

import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from .exceptions import ServiceError
from .upstream import UpstreamStream

logger = logging.getLogger(__name__)

DONE_EVENT = "data: [DONE]\n\n"
STREAM_FAILED = "Stream interrupted"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_sse_event(data: Dict[str, Any]) -> str:
    """Format one SSE data event"""
    return f"data: {json.dumps(data)}\n\n"


class RelayState(str, Enum):
    OPENING = "opening"
    RELAYING = "relaying"
    DRAINING = "draining"
    CLOSED = "closed"


class StreamRelay:
    """
    Forwards provider deltas to the client as ordered SSE events.

    Each non-empty delta becomes one ``{"content": ...}`` event. On success the
    last event is ``[DONE]``; a failure after relaying started ends the stream
    with a single ``{"error": ...}`` event instead. The upstream stream is
    closed on every exit path, including client disconnects.
    """

    def __init__(
        self,
        upstream: UpstreamStream,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.upstream = upstream
        self.is_disconnected = is_disconnected
        self.state = RelayState.OPENING
        self.events_sent = 0

    async def events(self) -> AsyncIterator[str]:
        self.state = RelayState.RELAYING
        try:
            async for chunk in self.upstream.chunks():
                if self.is_disconnected is not None and await self.is_disconnected():
                    logger.info("Client disconnected, aborting provider stream")
                    return
                if chunk.done:
                    break
                if chunk.delta_content:
                    self.events_sent += 1
                    yield create_sse_event({"content": chunk.delta_content})

            self.state = RelayState.DRAINING
            yield DONE_EVENT
        except ServiceError as e:
            self.state = RelayState.DRAINING
            logger.warning(f"Stream failed after {self.events_sent} events: {e.message}")
            yield create_sse_event({"error": e.message})
        except Exception as e:
            # Status line is already sent, so report in-band
            self.state = RelayState.DRAINING
            logger.exception(f"Unexpected stream error: {e}")
            yield create_sse_event({"error": STREAM_FAILED})
        finally:
            self.state = RelayState.CLOSED
            await self.upstream.aclose()
