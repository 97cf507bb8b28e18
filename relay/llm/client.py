"""
llm/client.py — Ollama chat client, buffered and streaming.

Ollama's /api/chat endpoint:
  POST /api/chat
  {"model": "...", "messages": [...], "stream": false}
  -> {"message": {"role": "assistant", "content": "..."}, "done": true}

With "stream": true the body is NDJSON — one partial object per line,
the last one carrying "done": true.

Other inference services name the reply field differently ("response",
"output_text", "text", ...). Resolution is first-present-wins over the
candidate lists below; upstream shape changes are one edit here.
"""
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from relay.config import Settings, get_settings
from relay.errors import UpstreamModelError
from relay.observability.logger import get_logger

logger = get_logger(__name__)

# Candidate paths, in priority order
REPLY_FIELDS: tuple[tuple[str, ...], ...] = (
    ("message", "content"),
    ("response",),
    ("output_text",),
    ("result",),
    ("text",),
)
DELTA_FIELDS: tuple[tuple[str, ...], ...] = (
    ("message", "content"),
    ("response",),
    ("delta",),
    ("text",),
)

STREAM_DONE = object()


def extract_text(payload: Any, fields: tuple[tuple[str, ...], ...] = REPLY_FIELDS) -> str:
    """
    Return the text under the first candidate path present in payload.
    Empty string if none match. Non-string leaves are stringified.
    """
    if not isinstance(payload, dict):
        return ""
    for path in fields:
        node: Any = payload
        for key in path:
            if not isinstance(node, dict) or node.get(key) is None:
                node = None
                break
            node = node[key]
        if node is not None and node != "":
            return node if isinstance(node, str) else str(node)
    return ""


def parse_stream_line(line: str) -> Any:
    """
    Parse one line of a streamed body.
    Accepts bare NDJSON and SSE "data: {...}" lines.
    Returns a dict, STREAM_DONE for a "[DONE]" sentinel, or None for
    blank / unparseable lines (those are dropped by the caller).
    """
    line = line.strip()
    if not line:
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    if line == "[DONE]":
        return STREAM_DONE
    try:
        part = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("stream_fragment_dropped", extra={"fragment": line[:200]})
        return None
    return part if isinstance(part, dict) else None


class ModelStream(ABC):
    """Async iterator of partial-result dicts from one streamed completion."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[dict]:
        ...

    @abstractmethod
    async def aclose(self) -> None:
        ...


class ModelClient(ABC):
    """What the relay needs from an inference service."""

    @abstractmethod
    async def complete(self, messages: list[dict], model: str | None = None) -> dict:
        """Single completion. Returns the raw result object."""

    @abstractmethod
    async def open_stream(self, messages: list[dict], model: str | None = None) -> ModelStream:
        """Start a streamed completion. Raises before returning if the upstream refuses."""

    async def aclose(self) -> None:
        return None


class OllamaStream(ModelStream):

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    async def __aiter__(self) -> AsyncIterator[dict]:
        try:
            async for line in self._response.aiter_lines():
                part = parse_stream_line(line)
                if part is None:
                    continue
                if part is STREAM_DONE:
                    break
                if part.get("error"):
                    raise UpstreamModelError(str(part["error"]))
                yield part
                if part.get("done") is True:
                    break
        except httpx.HTTPError as e:
            raise UpstreamModelError(f"Model stream interrupted: {e}") from e
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class OllamaClient(ModelClient):

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            # Large local models can take minutes per reply
            self._client = httpx.AsyncClient(
                base_url=self._settings.ollama_base_url,
                timeout=self._settings.llm_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    def _payload(self, messages: list[dict], model: str | None, stream: bool) -> dict:
        return {
            "model": model or self._settings.ollama_llm_model,
            "messages": messages,
            "stream": stream,
            "options": {
                "temperature": self._settings.llm_temperature,
                "num_predict": self._settings.llm_max_tokens,
            },
        }

    async def complete(self, messages: list[dict], model: str | None = None) -> dict:
        payload = self._payload(messages, model, stream=False)
        try:
            response = await self._http().post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamModelError(f"Model call failed: {e}") from e
        except ValueError as e:
            raise UpstreamModelError(f"Model returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamModelError("Model returned an unexpected result shape")
        if data.get("error"):
            raise UpstreamModelError(str(data["error"]))

        logger.info(
            "llm_completion",
            extra={
                "model": payload["model"],
                "tokens_generated": data.get("eval_count", 0),
                "tokens_prompt": data.get("prompt_eval_count", 0),
            },
        )
        return data

    async def open_stream(self, messages: list[dict], model: str | None = None) -> ModelStream:
        payload = self._payload(messages, model, stream=True)
        client = self._http()
        request = client.build_request("POST", "/api/chat", json=payload)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamModelError(f"Model stream unavailable: {e}") from e

        if response.is_error:
            await response.aread()
            await response.aclose()
            raise UpstreamModelError(
                f"Model stream unavailable: HTTP {response.status_code} {response.text[:200]}"
            )
        return OllamaStream(response)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
