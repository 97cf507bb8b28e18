"""
llm/compactor.py — Fold old turns into the session's rolling summary.

When history grows past the threshold, everything except the most recent
`keep_recent` turns is rendered as a transcript and summarized by the
model. The result is appended to the existing summary:

    <previous summary>
    ---
    <new bullet points>

The compactor never trims history itself; the actor's FIFO cap bounds
storage. A slice can therefore be summarized more than once before it is
evicted. The summary is advisory context, so the repetition is harmless.

Failure never blocks the reply: any error is logged and the request
carries on with the state it already had.
"""
from relay.errors import RelayError
from relay.llm.client import ModelClient, extract_text
from relay.models import SessionRecord, Turn
from relay.observability.logger import get_logger, Timer
from relay.session.actor import SessionActor

logger = get_logger(__name__)

SUMMARY_SEPARATOR = "\n---\n"

SUMMARIZE_INSTRUCTION = (
    "Summarize the dialogue into concise bullet points with key facts, names, "
    "decisions, and tasks. Keep it under {word_limit} words."
)


def needs_compaction(record: SessionRecord, threshold: int) -> bool:
    return len(record.history) > threshold


def render_transcript(turns: list[Turn]) -> str:
    """USER: ...\\nASSISTANT: ... — one line per turn."""
    return "\n".join(f"{turn.role.value.upper()}: {turn.content}" for turn in turns)


def merge_summary(previous: str, addition: str) -> str:
    return f"{previous}{SUMMARY_SEPARATOR}{addition}" if previous else addition


class HistoryCompactor:

    def __init__(
        self,
        client: ModelClient,
        model: str | None = None,
        threshold: int = 60,
        keep_recent: int = 40,
        word_limit: int = 150,
    ) -> None:
        self._client = client
        self._model = model
        self.threshold = threshold
        self._keep_recent = keep_recent
        self._word_limit = word_limit

    async def maybe_compact(self, actor: SessionActor, record: SessionRecord) -> bool:
        """
        Compact if record is over the threshold.
        Returns True when a new summary was written.
        """
        if not needs_compaction(record, self.threshold):
            return False

        oldest = record.history[: len(record.history) - self._keep_recent]
        prompt = [
            {"role": "system", "content": SUMMARIZE_INSTRUCTION.format(word_limit=self._word_limit)},
            {"role": "user", "content": render_transcript(oldest)},
        ]

        with Timer() as t:
            try:
                result = await self._client.complete(prompt, model=self._model)
            except Exception as e:
                logger.warning(
                    "compaction_failed",
                    extra={"session_id": actor.session_id, "error": str(e)},
                )
                return False

        addition = extract_text(result).strip()
        if not addition:
            logger.warning(
                "compaction_failed",
                extra={"session_id": actor.session_id, "error": "empty summary"},
            )
            return False

        try:
            # Re-read under the lock so a concurrent compaction's text is kept
            async with actor.transaction() as tx:
                current = await tx.read()
                await tx.set_summary(merge_summary(current.summary, addition))
        except RelayError as e:
            logger.warning(
                "compaction_failed",
                extra={"session_id": actor.session_id, "error": e.message},
            )
            return False

        logger.info(
            "compaction_complete",
            extra={
                "session_id": actor.session_id,
                "turns_summarized": len(oldest),
                "summary_chars": len(addition),
                "latency_ms": t.elapsed_ms,
            },
        )
        return True
