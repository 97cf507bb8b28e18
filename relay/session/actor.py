"""
session/actor.py — Serialized owner of one session's record.

Every operation on a session key runs under that key's asyncio.Lock, so
two requests touching the same session never interleave their
read-modify-write sequences. Different keys never share a lock.

    registry = SessionRegistry(store, max_turns=80)
    actor = registry.get("abc")          # implicit creation
    record = await actor.read()
    await actor.append(Turn(role=Role.USER, content="hi"))

transaction() holds the lock across several operations; the turn
persister uses it so an exchange's user+assistant appends stay adjacent.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from relay.models import SessionRecord, Turn
from relay.session.store import SessionStore


class _SessionOps:
    """
    The four record operations, assuming the caller holds the lock.
    Store calls run in a worker thread so a file-backed store does not
    block other sessions on the event loop.
    """

    def __init__(self, session_id: str, store: SessionStore, max_turns: int) -> None:
        self.session_id = session_id
        self._store = store
        self._max_turns = max_turns

    def _append(self, turn: Turn) -> None:
        record = self._store.load(self.session_id)
        history = [*record.history, turn][-self._max_turns:]
        self._store.save(self.session_id, SessionRecord(history=history, summary=record.summary))

    def _set_summary(self, text: str) -> None:
        record = self._store.load(self.session_id)
        self._store.save(self.session_id, SessionRecord(history=record.history, summary=text))

    async def read(self) -> SessionRecord:
        return await asyncio.to_thread(self._store.load, self.session_id)

    async def append(self, turn: Turn) -> None:
        await asyncio.to_thread(self._append, turn)

    async def set_summary(self, text: str) -> None:
        await asyncio.to_thread(self._set_summary, text)

    async def reset(self) -> None:
        await asyncio.to_thread(self._store.save, self.session_id, SessionRecord())


class SessionTransaction:
    """Handle yielded by SessionActor.transaction(); lock is already held."""

    def __init__(self, ops: _SessionOps) -> None:
        self._ops = ops

    async def read(self) -> SessionRecord:
        return await self._ops.read()

    async def append(self, turn: Turn) -> None:
        await self._ops.append(turn)

    async def set_summary(self, text: str) -> None:
        await self._ops.set_summary(text)

    async def reset(self) -> None:
        await self._ops.reset()


class SessionActor:

    def __init__(self, session_id: str, store: SessionStore, lock: asyncio.Lock, max_turns: int) -> None:
        self.session_id = session_id
        self._ops = _SessionOps(session_id, store, max_turns)
        self._lock = lock

    async def read(self) -> SessionRecord:
        async with self._lock:
            return await self._ops.read()

    async def append(self, turn: Turn) -> None:
        """Append one turn, then keep only the most recent max_turns."""
        async with self._lock:
            await self._ops.append(turn)

    async def set_summary(self, text: str) -> None:
        """Replace the summary verbatim. Accumulation is the caller's job."""
        async with self._lock:
            await self._ops.set_summary(text)

    async def reset(self) -> None:
        async with self._lock:
            await self._ops.reset()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SessionTransaction]:
        async with self._lock:
            yield SessionTransaction(self._ops)


class SessionRegistry:
    """
    Hands out SessionActors by session id. Actors for the same id share
    one lock; locks are created lazily and kept for the process lifetime
    (records have no expiry either).
    """

    def __init__(self, store: SessionStore, max_turns: int = 80) -> None:
        self._store = store
        self._max_turns = max_turns
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, session_id: str) -> SessionActor:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks.setdefault(session_id, asyncio.Lock())
        return SessionActor(session_id, self._store, lock, self._max_turns)
