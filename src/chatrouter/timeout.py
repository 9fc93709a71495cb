from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .errors import ModelTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MODEL_TIMEOUT_MS = 8000


def _discard_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"abandoned call finished late with {exc!r}")


async def with_deadline(
    operation: Awaitable[T],
    label: str,
    deadline_ms: int = MODEL_TIMEOUT_MS,
) -> T:
    """Await ``operation`` for at most ``deadline_ms`` milliseconds.

    Exactly one of the operation's outcome or a :class:`ModelTimeoutError` is
    observed. On timeout the pending task is asked to cancel but is not waited
    for; whatever it eventually produces is dropped.
    """
    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=max(deadline_ms, 0) / 1000.0)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()
    task.add_done_callback(_discard_late_result)
    task.cancel()
    raise ModelTimeoutError(f"{label} did not respond in time", label=label)


__all__ = ["MODEL_TIMEOUT_MS", "with_deadline"]
