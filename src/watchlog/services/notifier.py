"""Best-effort fan-out of "entry logged" notifications to in-process listeners."""

from __future__ import annotations

import asyncio
import inspect
from typing import Callable, List, Optional, Set

from rich.console import Console

from watchlog.models.diagnostic import LoggedNotification

Listener = Callable[[LoggedNotification], object]


class Notifier:
    """Deliver notifications without waiting for, or retrying, any listener."""

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()
        self._listeners: List[Listener] = []
        self._pending: Set[asyncio.Task[object]] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, notification: LoggedNotification) -> int:
        """Hand ``notification`` to every listener; returns how many accepted it.

        Coroutine listeners are scheduled as tasks and not awaited.
        """

        delivered = 0
        for listener in list(self._listeners):
            try:
                result = listener(notification)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._finish)
            except Exception as exc:
                self._console.log(f"[yellow]Notify:[/yellow] listener {listener!r} failed: {exc}")
                continue
            delivered += 1
        return delivered

    def _finish(self, task: "asyncio.Task[object]") -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._console.log(f"[yellow]Notify:[/yellow] async listener failed: {task.exception()}")


__all__ = ["Listener", "Notifier"]
