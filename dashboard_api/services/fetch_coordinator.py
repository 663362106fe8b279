"""
Fetch coordinator — at most one in-flight GA4 fetch per (tenant, range).

The first caller for a key registers an asyncio.Task before yielding to the
event loop; every later caller for the same key awaits that task instead of
starting its own.  Waiters go through ``asyncio.shield`` so a caller that
gives up (request cancelled) stops waiting without cancelling the shared
fetch.  The key is released in a done-callback, which runs on success,
failure and cancellation alike.

No retries happen here — a failed fetch fails every waiter once.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """Singleflight registry keyed by (tenant, date range)."""

    def __init__(self):
        self._inflight: dict[Hashable, asyncio.Task] = {}
        self._started = 0
        self._joined = 0

    async def fetch_once(
        self,
        tenant_id: Hashable,
        date_range: Hashable,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run ``fetch_fn`` unless an identical fetch is already in flight.

        Signature of ``fetch_fn``: ``async fn() -> result``.
        """
        key = (tenant_id, date_range)
        task = self._inflight.get(key)

        if task is None:
            task = asyncio.ensure_future(fetch_fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
            self._started += 1
            logger.debug("Fetch started for %s (%d in flight)", key, len(self._inflight))
        else:
            self._joined += 1
            logger.debug("Joined in-flight fetch for %s", key)

        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the outcome as retrieved when every waiter has already walked away.
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Fetch for %s failed: %s", key, task.exception())

    @property
    def in_flight(self) -> int:
        """Number of fetches currently running."""
        return len(self._inflight)

    @property
    def started(self) -> int:
        """Fetches actually launched (for diagnostics / tests)."""
        return self._started

    @property
    def joined(self) -> int:
        """Callers that piggy-backed on an in-flight fetch."""
        return self._joined

    def is_in_flight(self, tenant_id: Hashable, date_range: Hashable) -> bool:
        return (tenant_id, date_range) in self._inflight
