"""
Event registry for the Grafana API client.

One ordered list of subscribers per event name. Listeners may be plain
functions or coroutine functions; coroutines are scheduled as tasks so a slow
listener never holds up the connection.

Example usage:
    events = EventRegistry()

    @events.on("ready")
    async def ready():
        print("Identified!")

    events.emit("ready")
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Set

Listener = Callable[..., Optional[Awaitable[None]]]

# Events emitted by GrafanaAPIClient
EVENT_NAMES: tuple[str, ...] = (
    "connect",              # ()                    transport open, handshake pending
    "ready",                # ()                    identified
    "disconnect",           # ()                    transport gone
    "send",                 # ()                    aggregator acknowledged a frame
    "clustersDataUpdate",   # (data)                aggregated cluster data
    "clusterStatusUpdate",  # (all_connected)       cluster status changed
    "remoteEval",           # (data, reply)         another cluster asks us to evaluate
    "error",                # (err)                 connection error
)


@dataclass
class _Subscription:
    callback: Listener
    once: bool = False


class EventRegistry:

    def __init__(self, names: tuple[str, ...] = EVENT_NAMES, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._subscriptions: dict[str, list[_Subscription]] = {name: [] for name in names}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    def _list(self, name: str) -> list[_Subscription]:
        try:
            return self._subscriptions[name]
        except KeyError:
            raise ValueError(f"Unknown event '{name}', expected one of: {', '.join(self._subscriptions)}") from None

    def on(self, name: str, callback: Optional[Listener] = None):
        """Subscribe to an event. Without a callback, returns a decorator."""
        if callback is None:
            return lambda func: self.on(name, func)
        self._list(name).append(_Subscription(callback))
        return callback

    def once(self, name: str, callback: Optional[Listener] = None):
        """Subscribe to the next occurrence of an event only"""
        if callback is None:
            return lambda func: self.once(name, func)
        self._list(name).append(_Subscription(callback, once=True))
        return callback

    def off(self, name: str, callback: Optional[Listener] = None) -> None:
        """Unsubscribe a callback, or every callback for the event if none is given"""
        subs = self._list(name)
        if callback is None:
            subs.clear()
            return
        for sub in subs:
            if sub.callback == callback:
                subs.remove(sub)
                return

    def listener_count(self, name: str) -> int:
        return len(self._list(name))

    def emit(self, name: str, *args: Any) -> bool:
        """Call every subscriber in order. Returns True if there was at least one."""
        subs = self._list(name)
        if not subs:
            return False
        for sub in list(subs):
            if sub.once and sub in subs:
                subs.remove(sub)
            try:
                result = sub.callback(*args)
            except Exception:
                self.logger.exception(f"Listener for '{name}' raised")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(lambda t, n=name: self._task_done(n, t))
        return True

    def _task_done(self, name: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Listener for '{name}' raised", exc_info=task.exception())
