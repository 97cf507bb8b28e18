"""
session/persister.py — Commit one exchange to a session.

User turn first, assistant turn second, both inside one actor transaction
so concurrent exchanges on the same session never interleave.
"""
from relay.models import Role, Turn
from relay.observability.logger import get_logger
from relay.session.actor import SessionActor

logger = get_logger(__name__)


async def persist_turns(actor: SessionActor, user_text: str, assistant_text: str) -> None:
    async with actor.transaction() as tx:
        await tx.append(Turn(role=Role.USER, content=user_text))
        await tx.append(Turn(role=Role.ASSISTANT, content=assistant_text))

    logger.info(
        "turns_persisted",
        extra={"session_id": actor.session_id, "assistant_chars": len(assistant_text)},
    )
