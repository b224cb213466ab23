"""
FastAPI application and endpoints
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Dict, Optional

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import NotFound, RateLimited, ServiceError
from .message_utils import MESSAGES_REQUIRED, build_conversation
from .models import ChatRequest, ChatResponse, HealthResponse
from .rate_limit import FixedWindowRateLimiter, admit
from .settings import Settings, get_settings
from .streaming import SSE_HEADERS, StreamRelay
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

ENDPOINT_NOT_FOUND = "Endpoint not found"
INTERNAL_ERROR = "Internal server error"


def _validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        loc = tuple(error.get("loc", ()))
        if loc in (("body",), ("body", "messages")):
            return MESSAGES_REQUIRED
        if len(loc) > 2 and loc[1] == "messages":
            return f"Invalid request: malformed message at index {loc[2]}"
        if loc[-1:] == ("model",):
            return "Invalid request: model must be a non-empty string"
    return "Invalid request"


def internal_error_response(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500; internal detail is only exposed in development"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    body: Dict[str, Any] = {"error": INTERNAL_ERROR}
    if request.app.state.settings.is_development:
        body["message"] = str(exc)
    return JSONResponse(body, status_code=500)


class RelayRoute(APIRoute):
    """
    Route that answers unexpected errors with the generic 500 itself.

    Errors handled here stay inside the CORS middleware, unlike the ones that
    reach Starlette's outermost error middleware.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def guarded_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except (ServiceError, StarletteHTTPException, RequestValidationError):
                raise
            except Exception as e:
                return internal_error_response(request, e)

        return guarded_handler


class AdmissionControlledRoute(RelayRoute):
    """Route gated by the rate limiter before its body is read or validated"""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def admitted_handler(request: Request) -> Response:
            remaining = admit(request)
            response = await handler(request)
            response.headers["X-RateLimit-Limit"] = str(request.app.state.rate_limiter.max_requests)
            response.headers["X-RateLimit-Remaining"] = str(remaining)
            return response

        return admitted_handler


def register_exception_handlers(app: FastAPI) -> None:
    """Map every failure onto the ``{"error": ...}`` response contract"""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimited) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": _validation_message(exc)}, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown methods on known paths are reported like unknown paths
        if exc.status_code in (404, 405):
            error = NotFound(ENDPOINT_NOT_FOUND)
            return JSONResponse({"error": error.message, "path": request.url.path}, status_code=error.status_code)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        # Only reached for failures outside a RelayRoute, e.g. in middleware
        return internal_error_response(request, exc)


def create_app(
    settings: Optional[Settings] = None,
    upstream: Optional[UpstreamClient] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The upstream client and rate limiter can be injected, e.g. with a mock
    transport or a fake clock.
    """
    settings = settings or get_settings()
    if upstream is None:
        upstream = UpstreamClient(
            api_key=settings.openai_api_key,
            url=settings.openai_api_url,
            timeout=settings.request_timeout,
        )
    if rate_limiter is None:
        rate_limiter = FixedWindowRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY is not set; chat requests will be rejected")
        logger.info(f"Allowed origins: {settings.cors_origins}")
        yield
        await upstream.aclose()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.upstream = upstream
    app.state.rate_limiter = rate_limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.router.route_class = RelayRoute

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="OK",
            timestamp=datetime.now(timezone.utc),
            service=settings.app_name,
        )

    router = APIRouter(prefix="/api", route_class=AdmissionControlledRoute)

    @router.post("/chat", response_model=ChatResponse)
    async def chat(body: ChatRequest) -> ChatResponse:
        """Buffered chat completion"""
        conversation = build_conversation(body.messages, settings.system_prompt, settings.max_history_messages)
        model = body.model or settings.default_model

        result = await upstream.complete(model, conversation)
        return ChatResponse(message=result.content, usage=result.usage)

    @router.post("/chat/stream")
    async def chat_stream(body: ChatRequest, request: Request) -> StreamingResponse:
        """Streamed chat completion as Server-Sent Events"""
        conversation = build_conversation(body.messages, settings.system_prompt, settings.max_history_messages)
        model = body.model or settings.default_model

        # Failures here still produce a normal JSON error response
        stream = await upstream.open_stream(model, conversation)
        relay = StreamRelay(stream, request.is_disconnected)
        return StreamingResponse(relay.events(), media_type="text/event-stream", headers=SSE_HEADERS)

    app.include_router(router)
    return app
