"""Helpers for hooks that may be sync or async, and for abortable awaits."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Optional

from .error_handler import AgentAborted


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def run_abortable(awaitable: Awaitable, abort_event: Optional[asyncio.Event]) -> Any:
    """Await ``awaitable`` unless ``abort_event`` fires first.

    On abort the pending work is cancelled and AgentAborted is raised.
    """
    if abort_event is None:
        return await awaitable
    if abort_event.is_set():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise AgentAborted("Run aborted before the model call started")

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort_event.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if work in done:
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    raise AgentAborted("Run aborted by caller")
