"""
background.py
~~~~~~~~~~~~~
Fire-and-forget scheduling for work that must stay off the response path
(location lookups, storage writes, Telegram messages).

Tasks are kept in a module-level set until they finish so the event loop
does not garbage-collect them mid-flight; :func:`drain` lets the app's
lifespan (and tests) wait for or cancel whatever is still running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

LOG = logging.getLogger("background")

_tasks: set[asyncio.Task[Any]] = set()


def _done(task: asyncio.Task[Any]) -> None:
    _tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOG.warning("[bg] %s failed: %s", task.get_name(), exc)


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str | None = None) -> None:
    """Schedule *coro* without awaiting it."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # No running loop - run synchronously (shouldn't happen in FastAPI)
        asyncio.run(coro)
        return

    task = loop.create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_done)


def pending() -> int:
    return len(_tasks)


async def drain(cancel: bool = False) -> None:
    """
    Wait until no scheduled task is left.

    Tasks spawned by other tasks while draining are awaited too. With
    *cancel* every outstanding task is cancelled first (shutdown).
    """
    while _tasks:
        batch = list(_tasks)
        if cancel:
            for task in batch:
                task.cancel()
        await asyncio.gather(*batch, return_exceptions=True)
        _tasks.difference_update(batch)


def reset() -> None:
    """Forget all tracked tasks (tests switch event loops between cases)."""
    _tasks.clear()
