"""Detached execution of post-commit side effects (broadcasts, email)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from .metrics import SUPPORT_SIDE_EFFECT_FAILURES_TOTAL

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    """Runs each side effect as its own task.

    A failure is logged and counted; it never reaches the request that
    scheduled it and never stops the other side effects.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, effect: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"support-side-effect:{effect}")
        self._pending.add(task)
        task.add_done_callback(lambda done: self._finished(effect, done))
        return task

    def _finished(self, effect: str, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Side effect %s was cancelled", effect)
            return
        exc = task.exception()
        if exc is not None:
            SUPPORT_SIDE_EFFECT_FAILURES_TOTAL.labels(effect=effect).inc()
            logger.error("Side effect %s failed", effect, exc_info=exc)

    async def drain(self) -> None:
        """Wait for every scheduled side effect to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
