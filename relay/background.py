"""
background.py — Fire-and-forget tasks that still run to completion.

asyncio only keeps weak references to tasks, so a task nobody holds can be
garbage-collected mid-flight. Tasks started here are held in a module set
until they finish, and their failures are logged instead of vanishing.
The app lifespan calls drain_background() on shutdown so pending
persistence is awaited before the loop closes.
"""
import asyncio
from typing import Coroutine, Any

from relay.observability.logger import get_logger

logger = get_logger(__name__)

_TASKS: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _TASKS.discard(task)
    if task.cancelled():
        logger.warning("background_task_cancelled", extra={"label": task.get_name()})
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "background_task_failed",
            extra={"label": task.get_name(), "error": str(exc)},
            exc_info=exc,
        )


def run_in_background(coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro, name=label)
    _TASKS.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_count() -> int:
    return len(_TASKS)


async def drain_background() -> None:
    """Wait for every task started on the running loop, including ones they start."""
    loop = asyncio.get_running_loop()
    while True:
        pending = [t for t in _TASKS if not t.done() and t.get_loop() is loop]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
