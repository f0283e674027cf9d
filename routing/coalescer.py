"""
Purpose: In-flight request registry (RequestCoalescer).
What it does:
- Guarantees at most one concurrent remote resolution per key, whether callers
  share one event loop or each run their own loop on a separate thread.
- The first caller for a key starts the work on its own loop; every caller arriving
  while it is pending awaits the very same concurrent.futures.Future and sees the
  same result or exception.
- The registry entry is removed exactly once, as soon as the work settles,
  whatever the number of subscribers.

Rule: No caching here. A settled key is forgotten; the cache remembers results.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from .models import InFlightRequest, RouteResult

logger = logging.getLogger(__name__)

ResultFactory = Callable[[], Awaitable[RouteResult]]


class RequestCoalescer:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._tasks: Set[asyncio.Task] = set()  # strong refs to running owner tasks

    async def coalesce(self, key: str, factory: ResultFactory) -> RouteResult:
        """
        Await the pending resolution for `key`, starting it with `factory` if none exists.
        """
        result, _ = await self.coalesce_with_status(key, factory)
        return result

    async def coalesce_with_status(self, key: str, factory: ResultFactory) -> Tuple[RouteResult, bool]:
        """
        Same as coalesce(), also reporting whether this caller joined an existing request.
        """
        with self._lock:
            request = self._in_flight.get(key)
            joined = request is not None
            if request is None:
                request = InFlightRequest(key=key, pending=Future())
                self._in_flight[key] = request
            else:
                logger.debug("Joining in-flight request for %s", key)
            request.subscriber_count += 1
            pending = request.pending

        if not joined:
            task = asyncio.ensure_future(self._run(key, factory, pending))
            with self._lock:
                self._tasks.add(task)
            task.add_done_callback(self._forget_task)

        # shield: one waiter giving up must not cancel the others' resolution
        result = await asyncio.shield(asyncio.wrap_future(pending))
        return result, joined

    async def _run(self, key: str, factory: ResultFactory, pending: Future) -> None:
        try:
            result = await factory()
        except asyncio.CancelledError:
            pending.cancel()
            raise
        except Exception as exc:
            pending.set_exception(exc)
        else:
            pending.set_result(result)
        finally:
            with self._lock:
                request = self._in_flight.pop(key, None)
            if request is not None:
                logger.debug("Settled %s for %s subscriber(s)", key, request.subscriber_count)

    def _forget_task(self, task: asyncio.Task) -> None:
        with self._lock:
            self._tasks.discard(task)

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def subscriber_count(self, key: str) -> Optional[int]:
        with self._lock:
            request = self._in_flight.get(key)
            return None if request is None else request.subscriber_count

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._in_flight)
