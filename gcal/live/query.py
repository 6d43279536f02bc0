"""Live queries over the embedded store.

A ``LiveQuery`` pairs an async fetch function with the channels it
reads: whole tables, or single rows named by ``channel(table, key)``.
Stores call ``ChangeBus.notify(...)`` with the table and the touched row
channels after every committed mutation; each matching ``Subscription``
then re-runs its fetch and delivers a fresh snapshot to its callback.

Delivery rules:
- The current snapshot is delivered right after subscribing.
- One snapshot per matching change notification, strictly in
  notification order (a single task per subscription drains a FIFO queue).
- A failed fetch or callback is logged and skipped; the subscription
  stays alive.

Usage::

    query = LiveQuery(bus, ("meal_logs",), fetch_meals)
    sub = query.subscribe(on_meals)
    ...
    await sub.cancel()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[], None]


def channel(table: str, key: object) -> str:
    """Name of the channel for one row (or key) of *table*."""
    return f"{table}:{key}"


class ChangeBus:
    """Observer lists keyed by channel name.

    A channel is either a table name or ``channel(table, key)`` for a
    single row.  Listeners are plain callables invoked synchronously in
    subscription order; they must not block (subscriptions only enqueue
    a token).
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, name: str, listener: Listener) -> None:
        self._listeners.setdefault(name, []).append(listener)

    def unsubscribe(self, name: str, listener: Listener) -> bool:
        """Remove *listener* from channel *name*.

        Returns:
            ``True`` if it was registered, ``False`` otherwise.
        """
        listeners = self._listeners.get(name, [])
        try:
            listeners.remove(listener)
        except ValueError:
            return False
        return True

    def notify(self, *names: str) -> None:
        """Signal one change touching every channel in *names*.

        A listener registered on several of them is called once.
        """
        called: list[Listener] = []
        for name in names:
            for listener in list(self._listeners.get(name, [])):
                if listener not in called:
                    called.append(listener)
                    listener()

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))


class LiveQuery(Generic[T]):
    """A re-runnable query bound to the channels it depends on.

    Args:
        bus: Change bus the stores notify.
        tables: Channel names (tables or ``channel(table, key)``) whose
            changes invalidate the result.
        fetch: Coroutine function producing the current result.
        name: Label used in log records.
    """

    def __init__(
        self,
        bus: ChangeBus,
        tables: tuple[str, ...],
        fetch: Callable[[], Awaitable[T]],
        name: str = "",
    ) -> None:
        self.bus = bus
        self.tables = tables
        self.name = name or ",".join(tables)
        self._fetch = fetch

    async def snapshot(self) -> T:
        """One-shot read of the current result."""
        return await self._fetch()

    def subscribe(self, callback: Callable[[T], Any]) -> Subscription[T]:
        """Start delivering snapshots to *callback* (sync or async).

        Must be called from within a running event loop.
        """
        return Subscription(self, callback)


class Subscription(Generic[T]):
    """Active subscription to a ``LiveQuery``; see module docstring."""

    def __init__(self, query: LiveQuery[T], callback: Callable[[T], Any]) -> None:
        self._query = query
        self._callback = callback
        self._pending: asyncio.Queue[None] = asyncio.Queue()
        self._cancelled = False

        # Register before the first fetch so no change is missed.
        for table in query.tables:
            query.bus.subscribe(table, self._on_change)
        self._task = asyncio.create_task(self._run(), name=f"live:{query.name}")

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._task.done()

    def _on_change(self) -> None:
        self._pending.put_nowait(None)

    async def _run(self) -> None:
        await self._deliver()
        while True:
            await self._pending.get()
            await self._deliver()

    async def _deliver(self) -> None:
        try:
            value = await self._query.snapshot()
        except Exception as exc:
            logger.error(
                "Live query fetch failed: %s",
                exc,
                extra={"event": "live_query_error", "table": self._query.name},
            )
            return
        try:
            result = self._callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Live query subscriber failed", extra={"table": self._query.name})

    async def cancel(self) -> None:
        """Detach from the bus and stop the delivery task (idempotent)."""
        if self._cancelled:
            return
        self._cancelled = True
        for table in self._query.tables:
            self._query.bus.unsubscribe(table, self._on_change)
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
