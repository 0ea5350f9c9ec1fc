"""Background tasks for the kiosk event loop.

Workflow operations return as soon as they have moved the state forward;
analysis, saving and calibration finish in tasks created here. Each task
logs its own failure and, when given a ``pending`` set, stays in it until
done so owners can wait for or cancel their outstanding work.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    task = asyncio.get_running_loop().create_task(coro, name=context)
    task_logger = ensure_structured_logger(logger, fallback_name="tasks")

    def _on_done(done: asyncio.Task[Any]) -> None:
        if pending is not None:
            pending.discard(done)
        if done.cancelled():
            return
        error = done.exception()
        if error is not None:
            task_logger.error(
                "Task %s failed: %s", context or done.get_name(), error, exc_info=error
            )

    if pending is not None:
        pending.add(task)
    task.add_done_callback(_on_done)
    return task


__all__ = ["create_logged_task"]
