"""Request-scoped routing context: deadline and cancellation."""

import asyncio
import time
import uuid
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class RoutingCancelled(Exception):
    """The caller went away while a route was being calculated."""


class RoutingContext:
    """Carries a request id, an overall deadline and a cancel signal.

    Every awaited external call goes through ``run`` so it is bounded by
    both its own timeout and whatever is left of the request's budget.
    """

    def __init__(self, deadline_seconds: float, request_id: Optional[str] = None):
        self.request_id = request_id or str(uuid.uuid4())[:8]
        self.started_at = time.monotonic()
        self.deadline = self.started_at + deadline_seconds
        self._cancelled = asyncio.Event()

    @classmethod
    def from_settings(cls, request_id: Optional[str] = None) -> "RoutingContext":
        from saferoute.config import settings

        return cls(settings.routing_deadline_seconds, request_id=request_id)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def budget(self, timeout: float) -> float:
        return min(timeout, self.remaining())

    async def run(self, awaitable: Awaitable[T], timeout: float) -> T:
        """Await with min(timeout, remaining budget), aborting on cancel.

        Raises asyncio.TimeoutError when the budget runs out and
        RoutingCancelled if cancel() is called first.
        """
        if self.cancelled:
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise RoutingCancelled(f"[{self.request_id}] routing cancelled")

        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {work, watcher},
                timeout=self.budget(timeout),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work in done:
                return work.result()
            if watcher in done:
                raise RoutingCancelled(f"[{self.request_id}] routing cancelled")
            raise asyncio.TimeoutError()
        finally:
            watcher.cancel()
            if not work.done():
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)
