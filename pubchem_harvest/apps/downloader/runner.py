"""
Download Runner - Block-wise CID Range Orchestration

Enumerates CID blocks and drives every id through:

    path mapper -> artifact validator -> negative cache -> fetch state machine

Features:
- Bounded thread pool (blocking waits, no event loop)
- Proxy rotation through a shared, capacity-gated RoutePool
- Idempotent re-scans: present artifacts and cached 404s are skipped
- Graceful shutdown on SIGINT/SIGTERM (stops enumeration, finishes in-flight ids)

Usage:
    python -m pubchem_harvest.apps.downloader

    ENABLE_PROXY=true JOBS=4 python -m pubchem_harvest.apps.downloader
"""

import logging
import signal
import threading
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator

from pubchem_harvest.apps.downloader.fetcher import (
    ClientFactory,
    Fetcher,
    FetchState,
    RouteClients,
    default_client_factory,
)
from pubchem_harvest.apps.downloader.negative_cache import NegativeCache
from pubchem_harvest.apps.downloader.paths import is_present, path_for
from pubchem_harvest.apps.downloader.routes import RoutePool
from pubchem_harvest.utils.config import Settings
from pubchem_harvest.utils.errors import ArtifactWriteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
    cid: int
    path: Path


class ItemStatus(str, Enum):
    PRESENT = "present"
    KNOWN_ABSENT = "known_absent"
    DOWNLOADED = "downloaded"
    NOT_FOUND = "not_found"
    GIVEN_UP = "given_up"
    WRITE_FAILED = "write_failed"
    FAILED = "failed"


_STATE_STATUS = {
    FetchState.SUCCEEDED: ItemStatus.DOWNLOADED,
    FetchState.PERMANENTLY_ABSENT: ItemStatus.NOT_FOUND,
    FetchState.GIVEN_UP: ItemStatus.GIVEN_UP,
}


def block_range(block: int, block_size: int) -> range:
    """CIDs of ``block``. CID 0 does not exist, so block 0 starts at 1."""
    return range(max(1, block * block_size), (block + 1) * block_size)


def build_route_pool(settings: Settings, sleep: Callable[[float], None] = time.sleep) -> RoutePool:
    """Direct mode gets a single route wide enough for every worker."""
    addresses = settings.PROXY_ROUTES if settings.ENABLE_PROXY else [""]
    return RoutePool(
        addresses,
        capacity=settings.JOBS,
        backoff_seconds=settings.ACQUIRE_BACKOFF_SECONDS,
        sleep=sleep,
    )


class DownloadRunner:
    """
    Orchestrates downloads over CID blocks.

    Handles:
    - WorkItem materialization and short-circuit checks
    - Worker pool sizing (routes x jobs in proxy mode)
    - Per-block statistics
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        settings: Settings,
        negative_cache: NegativeCache | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.data_dir = Path(settings.DATA_DIR)
        self.negative_cache = negative_cache if settings.ENABLE_DB else None
        self.pool = build_route_pool(settings, sleep=sleep)
        self.clients = RouteClients(client_factory or default_client_factory(settings.API_TIMEOUT))
        self.fetcher = Fetcher(
            self.pool,
            self.clients,
            self.negative_cache,
            url_template=settings.API_URL_TEMPLATE,
            max_retries=settings.MAX_RETRIES,
            retry_backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
            min_bytes=settings.MIN_ARTIFACT_BYTES,
            sleep=sleep,
        )
        self.workers = self.pool.total_capacity
        self.shutdown_event = threading.Event()
        self._sleep = sleep
        self._stats: Counter = Counter()
        self._stats_lock = threading.Lock()

        logger.info(
            "DownloadRunner initialized",
            extra={
                "data_dir": str(self.data_dir),
                "workers": self.workers,
                "routes": len(self.pool),
                "proxy": settings.ENABLE_PROXY,
                "negative_cache": self.negative_cache is not None,
            },
        )

    def work_items(self, cids: range) -> Iterator[WorkItem]:
        for cid in cids:
            yield WorkItem(cid, self.data_dir / path_for(cid))

    def process(self, item: WorkItem) -> ItemStatus:
        """Run one WorkItem to completion. Never raises for per-item failures."""
        if is_present(item.path, self.settings.MIN_ARTIFACT_BYTES):
            return ItemStatus.PRESENT

        if self.negative_cache is not None and self.negative_cache.exists(item.cid):
            return ItemStatus.KNOWN_ABSENT

        try:
            report = self.fetcher.run(item.cid, item.path)
        except ArtifactWriteError as e:
            logger.error(
                "Artifact write failed: cid=%d, %s", item.cid, e,
                extra={"cid": item.cid, "error": str(e)},
            )
            return ItemStatus.WRITE_FAILED
        except Exception as e:
            logger.error(
                "Unexpected failure processing cid=%d: %s", item.cid, e,
                extra={"cid": item.cid, "error": str(e)},
                exc_info=True,
            )
            return ItemStatus.FAILED

        return _STATE_STATUS[report.state]

    def _record(self, future: Future) -> None:
        with self._stats_lock:
            self._stats[future.result()] += 1

    def run_range(self, cids: range) -> Counter:
        """Process every CID in ``cids`` (unordered) and return status counts.

        At most ``2 * workers`` items are queued at a time so huge ranges are
        never materialized up front.
        """
        self._stats = Counter()
        slots = threading.BoundedSemaphore(self.workers * 2)
        start_time = time.time()

        def done(future: Future) -> None:
            slots.release()
            self._record(future)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="download") as executor:
            for item in self.work_items(cids):
                if self.shutdown_event.is_set():
                    logger.info("Shutdown requested, stopping enumeration at cid=%d", item.cid)
                    break
                slots.acquire()
                executor.submit(self.process, item).add_done_callback(done)

        elapsed = time.time() - start_time
        stats = Counter(self._stats)
        logger.info(
            "Range complete: start=%d, stop=%d, elapsed=%.1fs, %s",
            cids.start, cids.stop, elapsed,
            ", ".join(f"{status.value}={count}" for status, count in sorted(stats.items())),
        )
        return stats

    def run(self) -> Counter:
        """Process ``DOWNLOAD_BLOCKS`` blocks from ``DOWNLOAD_START`` (0 = until stopped)."""
        block = self.settings.DOWNLOAD_START
        remaining = self.settings.DOWNLOAD_BLOCKS
        totals: Counter = Counter()

        logger.info(
            "Start download: block=%d, blocks=%s, jobs=%d, proxy=%s",
            block, remaining or "unbounded", self.settings.JOBS, self.settings.ENABLE_PROXY,
        )

        try:
            while not self.shutdown_event.is_set():
                totals.update(self.run_range(block_range(block, self.settings.BLOCK_SIZE)))
                block += 1
                if remaining:
                    remaining -= 1
                    if remaining == 0:
                        break
                self._sleep(self.settings.BLOCK_PAUSE_SECONDS)
        finally:
            self.clients.close()

        return totals

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
