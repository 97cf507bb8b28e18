"""
llm/relay.py — Per-request inference pipeline.

    LOAD_STATE → MAYBE_COMPACT → BUILD_PROMPT → INVOKE_MODEL
        → BUFFERED_RESPONSE | STREAM_RESPONSE → PERSIST_TURNS

Buffered: the reply is persisted before it is returned; a failed model
call persists nothing.

Streamed: the response body starts as soon as the upstream stream is
open. Pumping and accumulation run as background tasks, so persistence
finishes even if the client goes away or the response has already ended.

Compaction runs before every buffered reply. On the streaming path it only
runs when compact_on_stream is set.
"""
from typing import AsyncIterator

from relay.background import run_in_background
from relay.config import Settings
from relay.errors import UpstreamModelError
from relay.llm.client import ModelClient, extract_text
from relay.llm.compactor import HistoryCompactor
from relay.llm.prompt_builder import build_messages, clean_message
from relay.llm.streaming import StreamSplitter
from relay.observability.logger import get_logger, Timer
from relay.session.actor import SessionActor, SessionRegistry
from relay.session.persister import persist_turns

logger = get_logger(__name__)


class InferenceRelay:

    def __init__(
        self,
        registry: SessionRegistry,
        client: ModelClient,
        compactor: HistoryCompactor,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._client = client
        self._compactor = compactor
        self._settings = settings

    async def _prepare(self, session_id: str, message: str, compact: bool) -> tuple[SessionActor, str, list[dict]]:
        actor = self._registry.get(session_id)
        record = await actor.read()

        if compact and await self._compactor.maybe_compact(actor, record):
            record = await actor.read()

        cleaned = clean_message(message, self._settings.max_message_chars)
        messages = build_messages(record, cleaned, self._settings.default_system_prompt)
        return actor, cleaned, messages

    async def chat(self, session_id: str, message: str) -> str:
        """Buffered reply. Persists user + assistant turns, returns the reply text."""
        with Timer() as t:
            actor, cleaned, messages = await self._prepare(session_id, message, compact=True)

            result = await self._client.complete(messages)
            assistant_text = extract_text(result)
            # An empty reply is an upstream fault here, not a blank assistant
            # turn: fail with 500 and keep the session unchanged.
            if not assistant_text:
                raise UpstreamModelError("Model returned no reply text")

            await persist_turns(actor, cleaned, assistant_text)

        logger.info(
            "chat_complete",
            extra={
                "session_id": session_id,
                "prompt_messages": len(messages),
                "latency_ms": t.elapsed_ms,
            },
        )
        return assistant_text

    async def chat_stream(self, session_id: str, message: str) -> AsyncIterator[str]:
        """
        Open the upstream stream and return the client-facing fragment iterator.
        Raises UpstreamModelError if the stream cannot be opened.
        """
        actor, cleaned, messages = await self._prepare(
            session_id, message, compact=self._settings.compact_on_stream
        )

        upstream = await self._client.open_stream(messages)
        splitter = StreamSplitter(upstream, session_id=session_id)

        run_in_background(splitter.pump(), label=f"stream-pump-{session_id}")
        run_in_background(
            self._accumulate_and_persist(actor, cleaned, splitter),
            label=f"stream-persist-{session_id}",
        )
        return splitter.client_chunks()

    async def _accumulate_and_persist(self, actor: SessionActor, user_text: str, splitter: StreamSplitter) -> None:
        with Timer() as t:
            assistant_text = await splitter.accumulate()
            partial = splitter.error is not None

            if partial and not assistant_text:
                logger.warning("stream_persist_skipped", extra={"session_id": actor.session_id})
                return

            await persist_turns(actor, user_text, assistant_text)

        logger.info(
            "stream_complete",
            extra={
                "session_id": actor.session_id,
                "fragments": splitter.fragments,
                "partial": partial,
                "latency_ms": t.elapsed_ms,
            },
        )

    async def reset(self, session_id: str) -> None:
        await self._registry.get(session_id).reset()
        logger.info("session_reset", extra={"session_id": session_id})
