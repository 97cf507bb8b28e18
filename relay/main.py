"""
main.py — FastAPI application entry point.

Client routes:
  GET  /                     — health text
  POST /api/chat             — buffered reply {assistantText}
  POST /api/chat/stream      — streamed plain-text reply
  POST /api/reset            — clear a session's history and summary

Internal session routes (actor contract, not for browsers):
  GET  /internal/sessions/{id}/history
  POST /internal/sessions/{id}/append
  POST /internal/sessions/{id}/set-summary
  POST /internal/sessions/{id}/reset

Design decisions:
- Routes are thin — the pipeline lives in llm/relay.py
- Errors are {"error": ...} JSON, except on the streaming route where the
  body is plain text either way
- Every response carries permissive CORS headers; the browser client is
  served from a different origin
"""
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from relay.background import drain_background, pending_count
from relay.config import Settings, get_settings
from relay.errors import InvalidRequestError, RelayError
from relay.llm.client import ModelClient, OllamaClient
from relay.llm.compactor import HistoryCompactor
from relay.llm.relay import InferenceRelay
from relay.models import (
    AppendRequest, ChatRequest, ChatResponse, OkResponse, ResetRequest,
    SetSummaryRequest, Turn,
)
from relay.observability.logger import configure_level, get_logger
from relay.session.actor import SessionRegistry
from relay.session.store import SessionStore, build_store

logger = get_logger(__name__)

STREAM_PATH = "/api/chat/stream"

CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-headers": "content-type",
    "access-control-allow-methods": "GET,POST,OPTIONS",
}


def _require(value: str | None) -> str:
    """Non-blank string or InvalidRequestError."""
    if value is None or not str(value).strip():
        raise InvalidRequestError("sessionId and message required")
    return value


def _relay(request: Request) -> InferenceRelay:
    return request.app.state.relay


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


# ── Client routes ──────────────────────────────────────────────────────────────

router = APIRouter()


@router.get("/", response_class=PlainTextResponse, tags=["system"])
def health_check():
    return "running"


@router.post("/api/chat", response_model=ChatResponse, response_model_by_alias=True, tags=["chat"])
async def chat(body: ChatRequest, request: Request):
    """
    Buffered chat.
    400 if sessionId or message is missing, 500 on model or storage failure.
    Nothing is persisted unless the model replied.
    """
    session_id = _require(body.session_id)
    message = _require(body.message)

    assistant_text = await _relay(request).chat(session_id, message)
    return ChatResponse(assistant_text=assistant_text)


@router.post(STREAM_PATH, tags=["chat"])
async def chat_stream(body: ChatRequest, request: Request):
    """
    Streamed chat. The body is the reply text, fragment by fragment.
    The exchange is persisted after the upstream stream ends, independent
    of whether the client is still reading.
    """
    try:
        session_id = _require(body.session_id)
        message = _require(body.message)
        chunks = await _relay(request).chat_stream(session_id, message)
    except RelayError as e:
        logger.warning("stream_rejected", extra={"status": e.status_code, "error": e.message})
        prefix = "" if e.status_code < 500 else "stream error: "
        return PlainTextResponse(prefix + e.message, status_code=e.status_code)

    return StreamingResponse(
        chunks,
        media_type="text/plain; charset=utf-8",
        headers={"cache-control": "no-store"},
    )


@router.post("/api/reset", response_model=OkResponse, tags=["chat"])
async def reset_session(body: ResetRequest, request: Request):
    """Clear history and summary for one session."""
    if body.session_id is None or not body.session_id.strip():
        raise InvalidRequestError("sessionId required")
    await _relay(request).reset(body.session_id)
    return OkResponse()


# ── Internal session routes ────────────────────────────────────────────────────

internal = APIRouter(prefix="/internal/sessions/{session_id}", tags=["internal"])


@internal.get("/history")
async def session_history(session_id: str, request: Request):
    record = await _registry(request).get(session_id).read()
    return record.model_dump(mode="json")


@internal.post("/append", response_model=OkResponse)
async def session_append(session_id: str, body: AppendRequest, request: Request):
    await _registry(request).get(session_id).append(Turn(role=body.role, content=body.content))
    return OkResponse()


@internal.post("/set-summary", response_model=OkResponse)
async def session_set_summary(session_id: str, body: SetSummaryRequest, request: Request):
    await _registry(request).get(session_id).set_summary(body.summary)
    return OkResponse()


@internal.post("/reset", response_model=OkResponse)
async def session_reset(session_id: str, request: Request):
    await _registry(request).get(session_id).reset()
    return OkResponse()


# ── Error handlers ─────────────────────────────────────────────────────────────

def _error_response(request: Request, message: str, status_code: int) -> Response:
    if request.url.path == STREAM_PATH:
        return PlainTextResponse(message, status_code=status_code)
    return JSONResponse({"error": message}, status_code=status_code)


async def _relay_error_handler(request: Request, exc: RelayError) -> Response:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", extra={"path": request.url.path, "status": exc.status_code, "error": exc.message})
    return _error_response(request, exc.message, exc.status_code)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    first = exc.errors()[0] if exc.errors() else {}
    message = first.get("msg", "Invalid request body")
    logger.warning("request_invalid", extra={"path": request.url.path, "error": message})
    return _error_response(request, message, 400)


async def _unhandled_error_handler(request: Request, exc: Exception) -> Response:
    logger.error("request_crashed", extra={"path": request.url.path}, exc_info=exc)
    response = _error_response(request, str(exc) or exc.__class__.__name__, 500)
    # Runs in ServerErrorMiddleware, outside add_cors_headers
    response.headers.update(CORS_HEADERS)
    return response


# ── App factory ────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings: Settings = app.state.settings
    configure_level(settings.log_level)
    logger.info("config_loaded", extra={
        "llm_model": settings.ollama_llm_model,
        "summary_model": settings.summary_model,
        "history_max_turns": settings.history_max_turns,
        "compact_on_stream": settings.compact_on_stream,
    })
    yield
    # Streams that outlived their response still have turns to persist
    logger.info("app_draining", extra={"pending_tasks": pending_count()})
    await drain_background()
    await app.state.model_client.aclose()
    logger.info("app_shutdown", extra={"sessions": app.state.store.session_count()})


def create_app(
    settings: Settings | None = None,
    model_client: ModelClient | None = None,
    store: SessionStore | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    model_client = model_client or OllamaClient(settings)
    store = store or build_store(settings.session_store_dir)

    registry = SessionRegistry(store, max_turns=settings.history_max_turns)
    compactor = HistoryCompactor(
        model_client,
        model=settings.summary_model,
        threshold=settings.compaction_threshold,
        keep_recent=settings.compaction_keep_recent,
        word_limit=settings.summary_word_limit,
    )

    app = FastAPI(
        title="Chat Relay",
        description="Session-memory chat relay in front of a hosted LLM.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.model_client = model_client
    app.state.store = store
    app.state.registry = registry
    app.state.relay = InferenceRelay(registry, model_client, compactor, settings)

    # Every response gets the CORS headers; any OPTIONS, bare or a browser
    # preflight, is answered here with an empty 200.
    @app.middleware("http")
    async def add_cors_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    app.add_exception_handler(RelayError, _relay_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    app.include_router(internal)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run("relay.main:app", host=_settings.api_host, port=_settings.api_port)
