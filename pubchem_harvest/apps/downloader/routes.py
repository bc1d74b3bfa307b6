"""
Route pool - capacity-gated admission to egress routes.

Every fetch goes out through a route: the direct connection (empty address)
or one of the configured HTTP proxies. Each route admits at most ``capacity``
concurrent users. Workers scan for the first route with spare capacity and,
when every route is saturated, sleep and scan again.

Usage:
    pool = RoutePool(["", "http://10.0.0.2:8080"], capacity=4)

    with pool.lease() as handle:
        fetch_through(handle.address)
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

logger = logging.getLogger(__name__)


def route_label(address: str) -> str:
    return address or "direct"


@dataclass
class Route:
    address: str
    in_use: int = 0


class RouteHandle:
    """Token for one admitted use of a route. Released exactly once."""

    __slots__ = ("address", "_index", "_released")

    def __init__(self, address: str, index: int) -> None:
        self.address = address
        self._index = index
        self._released = False

    @property
    def label(self) -> str:
        return route_label(self.address)

    def __repr__(self) -> str:
        return f"RouteHandle({self.label!r}, released={self._released})"


class RoutePool:
    """Thread-safe pool of routes with a per-route concurrency cap."""

    def __init__(
        self,
        addresses: Sequence[str],
        capacity: int,
        backoff_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not addresses:
            raise ValueError("RoutePool needs at least one route")
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.capacity = capacity
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._routes = [Route(address) for address in addresses]
        self._lock = threading.Lock()

        logger.debug(
            "RoutePool initialized: routes=%s, capacity=%d",
            [route_label(a) for a in addresses], capacity,
        )

    def __len__(self) -> int:
        return len(self._routes)

    @property
    def total_capacity(self) -> int:
        return len(self._routes) * self.capacity

    def try_acquire(self) -> RouteHandle | None:
        """Admit the caller to the first route with spare capacity, or return None."""
        with self._lock:
            for index, route in enumerate(self._routes):
                if route.in_use < self.capacity:
                    route.in_use += 1
                    return RouteHandle(route.address, index)
        return None

    def acquire(self) -> RouteHandle:
        """Block until a route admits the caller, sleeping between scans."""
        while True:
            handle = self.try_acquire()
            if handle is not None:
                return handle
            logger.warning("All routes saturated, retrying in %.1fs", self.backoff_seconds)
            self._sleep(self.backoff_seconds)

    def release(self, handle: RouteHandle) -> None:
        """Return a handle's slot to its route.

        Raises:
            RuntimeError: If the handle was already released
        """
        with self._lock:
            if handle._released:
                raise RuntimeError(f"{handle!r} released twice")
            handle._released = True
            self._routes[handle._index].in_use -= 1

    @contextmanager
    def lease(self) -> Iterator[RouteHandle]:
        """Acquire a route for the duration of the block, releasing on any exit."""
        handle = self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)

    def in_use(self) -> int:
        with self._lock:
            return sum(route.in_use for route in self._routes)

    def snapshot(self) -> list[tuple[str, int]]:
        with self._lock:
            return [(route.address, route.in_use) for route in self._routes]
