# clickwise/tasks.py
import asyncio
import logging
from typing import Any, Callable, Dict, Hashable, Optional, Set

log = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]


class TaskRunner:
    """Fire-and-forget calls: executor inside a running loop, inline otherwise.

    Calls spawned with the same ``key`` run one after another in spawn order.
    Errors go to ``on_error`` or the log, never to the caller.
    """

    def __init__(self):
        self._pending: Set[asyncio.Future] = set()
        self._tails: Dict[Hashable, asyncio.Future] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def spawn(self, fn: Callable[..., Any], *args: Any, key: Optional[Hashable] = None,
              on_error: Optional[ErrorCallback] = None) -> None:
        def call():
            try:
                return fn(*args)
            except Exception as e:
                _report(fn, e, on_error)
                return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            call()
            return

        prev = self._tails.get(key) if key is not None else None
        if prev is not None and not prev.done():
            fut = loop.create_task(_after(prev, loop, call))
        else:
            fut = loop.run_in_executor(None, call)
        self._pending.add(fut)
        fut.add_done_callback(self._pending.discard)
        if key is not None:
            self._tails[key] = fut
            fut.add_done_callback(lambda f: self._release(key, f))

    def _release(self, key: Hashable, fut: asyncio.Future) -> None:
        if self._tails.get(key) is fut:
            del self._tails[key]

    async def drain(self) -> None:
        """Wait for outstanding work; used at shutdown only."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


async def _after(prev: asyncio.Future, loop: asyncio.AbstractEventLoop, call: Callable[[], Any]) -> Any:
    await asyncio.wait([prev])
    return await loop.run_in_executor(None, call)


def _report(fn: Callable[..., Any], exc: BaseException, on_error: Optional[ErrorCallback]) -> None:
    name = getattr(fn, "__qualname__", repr(fn))
    if on_error is None:
        log.warning("background call %s failed: %s", name, exc)
        return
    try:
        on_error(exc)
    except Exception:
        log.exception("error callback for %s failed", name)
