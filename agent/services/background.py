"""
Background Tasks
================
Detached fire-and-forget work that must never delay or fail a reply
(e.g. indexing post content for semantic search).

Tasks are referenced until done so the event loop cannot garbage-collect
them mid-flight. Their exceptions go to the log and the
agent_background_task_errors_total counter, never to the caller.
"""

import asyncio
from typing import Callable

from config import logger
from routes.metrics import BACKGROUND_TASK_ERRORS

_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task):
    _tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        BACKGROUND_TASK_ERRORS.labels(task=task.get_name()).inc()
        logger.warning(f"Background task '{task.get_name()}' failed (non-critical): {type(exc).__name__}: {exc}")


def spawn_blocking(name: str, func: Callable, *args) -> asyncio.Task:
    """Run a blocking callable in a worker thread, detached from the caller."""
    task = asyncio.create_task(asyncio.to_thread(func, *args), name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_count() -> int:
    return len(_tasks)


async def drain(timeout: float = 5.0):
    """Wait for in-flight tasks (shutdown); stragglers are cancelled."""
    if not _tasks:
        return
    done, pending = await asyncio.wait(set(_tasks), timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning(f"Cancelled {len(pending)} background task(s) on shutdown")
