import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..events import EventRegistry
from ..exceptions import GrafanaEvalTimeoutError
from ..io import OpCode

"""
===================================================================================
Remote evaluation over the REMOTE_EVAL opcode.

The same opcode carries both directions:
  Caller role:    we send {id: target cluster, data: code, uid} and wait for
                  a frame with the same uid, whose data is the result.
  Responder role: another cluster's request arrives with a uid we don't know.
                  We emit 'remoteEval' with a reply callback that sends
                  {id, uid, data} back.
A uid in our own pending set always belongs to the caller role.
===================================================================================
"""

SendFunc = Callable[[OpCode, Any], Awaitable[None]]
ReplyFunc = Callable[..., asyncio.Future]


@dataclass
class PendingEval:
    """An outbound remote eval waiting for its reply"""
    uid: int
    cluster_id: int
    future: asyncio.Future = field(repr=False, compare=False)
    timestamp: float = field(default_factory=time.time)


class CorrelationTracker:

    # How many settled uids (answered, timed out or cancelled) to remember, so late replies aren't mistaken for requests
    SETTLED_HISTORY = 256

    def __init__(self,
                 send: SendFunc,
                 events: EventRegistry,
                 logger: Optional[logging.Logger] = None,
                 timeout: Optional[float] = None):
        self._send = send
        self._events = events
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout
        self._pending: Dict[int, PendingEval] = {}
        self._settled: deque[int] = deque(maxlen=self.SETTLED_HISTORY)
        self._last_uid: int = 0
        self._reply_tasks: Set[asyncio.Future] = set()

    def __len__(self) -> int:
        return len(self._pending)

    def is_pending(self, uid: int) -> bool:
        return uid in self._pending

    def pending(self) -> list[PendingEval]:
        return list(self._pending.values())

    # ============================
    # CALLER ROLE
    # ============================

    def _alloc_uid(self) -> int:
        """Allocate a uid from the microsecond clock, strictly increasing and never pending"""
        # uids must stay below 2**53 to survive a JavaScript peer
        uid = max(time.time_ns() // 1000, self._last_uid + 1)
        while uid in self._pending:
            uid += 1
        self._last_uid = uid
        return uid

    async def request(self, cluster_id: int, code: str) -> Any:
        """Ask another cluster to evaluate code. Returns the data of its reply."""
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()

        uid = self._alloc_uid()
        if uid in self._pending: raise RuntimeError(f"uid {uid} already pending, which shouldn't be possible because we just allocated it")
        self._pending[uid] = PendingEval(uid=uid, cluster_id=cluster_id, future=fut)

        try:
            await self._send(OpCode.REMOTE_EVAL, {"id": cluster_id, "data": code, "uid": uid})
            self.logger.debug(f"Remote eval {uid} sent to cluster {cluster_id}")
            if self.timeout is None:
                return await fut
            try:
                return await asyncio.wait_for(fut, timeout=self.timeout)
            except TimeoutError:
                raise GrafanaEvalTimeoutError(f"No reply from cluster {cluster_id} to remote eval {uid} after {self.timeout}s") from None
        finally:
            if self._pending.pop(uid, None) is not None:
                # Timed out or cancelled: a reply may still arrive
                self._settled.append(uid)
            if not fut.done():
                fut.cancel()

    def cancel_all(self) -> None:
        """Cancel every pending eval. Their replies can no longer arrive."""
        if self._pending:
            self.logger.debug(f"Cancelling {len(self._pending)} pending remote eval(s)")
        for pending in list(self._pending.values()):
            self._settled.append(pending.uid)
            if not pending.future.done():
                pending.future.cancel()
        self._pending.clear()

    # ============================
    # INBOUND
    # ============================

    def handle(self, d: Any) -> None:
        """Process the payload of an inbound REMOTE_EVAL frame"""
        if not isinstance(d, dict) or not isinstance(d.get("uid"), (int, str)):
            self.logger.warning(f"Ignoring remote eval without a usable uid: {d!r}")
            return
        uid = d["uid"]

        # Reply to one of ours
        pending = self._pending.pop(uid, None)
        if pending is not None:
            self._settled.append(uid)
            if not pending.future.done():
                pending.future.set_result(d.get("data"))
            self.logger.debug(f"Remote eval {uid} answered by cluster {d.get('id', pending.cluster_id)}")
            return

        if uid in self._settled:
            self.logger.debug(f"Dropping duplicate reply to remote eval {uid}")
            return

        # Request from another cluster
        self._events.emit("remoteEval", d.get("data"), self._reply_func(d.get("id"), uid))

    def _reply_func(self, cluster_id: Any, uid: Any) -> ReplyFunc:
        def reply(error: Any = None, value: Any = None) -> asyncio.Future:
            data = error if error is not None else value
            if isinstance(data, BaseException):
                data = f"{type(data).__name__}: {data}"
            task = asyncio.ensure_future(self._send(OpCode.REMOTE_EVAL, {"id": cluster_id, "uid": uid, "data": data}))
            self._reply_tasks.add(task)
            task.add_done_callback(self._reply_done)
            return task
        return reply

    def _reply_done(self, task: asyncio.Future) -> None:
        self._reply_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Failed to send remote eval reply: {task.exception()}")
