"""Delayed-callback scheduling used by the diagnostics coordinator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol


class Scheduler(Protocol):
    """Runs a callback after a delay and lets callers cancel it before it fires."""

    def schedule(self, callback: Callable[[], None], delay: float) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop's timer."""

    def schedule(self, callback: Callable[[], None], delay: float) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()
