"""
llm/streaming.py — Split one upstream model stream into two consumers.

    upstream ──► pump() ──┬──► client queue ──► client_chunks()  (HTTP body)
                          └──► accumulator queue ──► accumulate() (persistence)

pump() reads the upstream exactly once. Each text fragment is put on both
queues with put_nowait, so a slow or vanished client never stalls
accumulation and accumulation never delays the client. The queues are
unbounded; their size is limited by the reply length the model is allowed
to produce (llm_max_tokens).

On upstream failure both queues still receive the end marker: the client
body ends and the accumulator returns whatever arrived before the error.
"""
import asyncio
from typing import AsyncIterator

from relay.llm.client import DELTA_FIELDS, ModelStream, extract_text
from relay.observability.logger import get_logger

logger = get_logger(__name__)

_END = object()


class StreamSplitter:

    def __init__(self, upstream: ModelStream, session_id: str = "") -> None:
        self._upstream = upstream
        self._session_id = session_id
        self._client_queue: asyncio.Queue = asyncio.Queue()
        self._accumulator_queue: asyncio.Queue = asyncio.Queue()
        self.error: Exception | None = None
        self.fragments = 0

    async def pump(self) -> None:
        try:
            async for part in self._upstream:
                piece = extract_text(part, DELTA_FIELDS)
                if not piece:
                    continue
                self.fragments += 1
                self._client_queue.put_nowait(piece)
                self._accumulator_queue.put_nowait(piece)
        except Exception as e:
            self.error = e
            logger.warning(
                "stream_upstream_failed",
                extra={"session_id": self._session_id, "error": str(e), "fragments": self.fragments},
            )
        finally:
            self._client_queue.put_nowait(_END)
            self._accumulator_queue.put_nowait(_END)
            await self._upstream.aclose()

    async def client_chunks(self) -> AsyncIterator[str]:
        """Fragments for the client, as they arrive."""
        while True:
            piece = await self._client_queue.get()
            if piece is _END:
                return
            yield piece

    async def accumulate(self) -> str:
        """Full (or, after an upstream error, partial) reply text."""
        parts: list[str] = []
        while True:
            piece = await self._accumulator_queue.get()
            if piece is _END:
                return "".join(parts)
            parts.append(piece)
