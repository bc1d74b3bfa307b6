"""
Fetch-retry state machine for a single CID.

    IDLE -> ACQUIRING -> FETCHING -> SUCCEEDED
                  ^           |----> PERMANENTLY_ABSENT
                  |           '----> RETRYABLE --(retries > max)--> GIVEN_UP
                  '--(backoff)-------'

Each attempt leases a route from the RoutePool, issues one GET and classifies
the response into a FetchOutcome. The route is released on every exit path
of the FETCHING state, before any backoff sleep.
"""

import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Union

import httpx

from pubchem_harvest.apps.downloader.negative_cache import NegativeCache
from pubchem_harvest.apps.downloader.routes import RouteHandle, RoutePool
from pubchem_harvest.utils.config import DEFAULT_URL_TEMPLATE
from pubchem_harvest.utils.errors import ArtifactWriteError, StoreWriteError

logger = logging.getLogger(__name__)

# NamedTemporaryFile creates 0600 files; artifacts get the usual umask-derived mode
_UMASK = os.umask(0)
os.umask(_UMASK)
ARTIFACT_MODE = 0o666 & ~_UMASK


class FetchState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"
    GIVEN_UP = "given_up"
    PERMANENTLY_ABSENT = "permanently_absent"


TERMINAL_STATES = frozenset(
    {FetchState.SUCCEEDED, FetchState.GIVEN_UP, FetchState.PERMANENTLY_ABSENT}
)


@dataclass(frozen=True)
class Success:
    body: bytes


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class TooSmall:
    size: int


@dataclass(frozen=True)
class TransientError:
    message: str


FetchOutcome = Union[Success, NotFound, TooSmall, TransientError]

# FETCHING -> next state, keyed on the outcome of the attempt
TRANSITIONS: dict[type, FetchState] = {
    Success: FetchState.SUCCEEDED,
    NotFound: FetchState.PERMANENTLY_ABSENT,
    TooSmall: FetchState.RETRYABLE,
    TransientError: FetchState.RETRYABLE,
}


@dataclass(frozen=True)
class FetchReport:
    cid: int
    state: FetchState
    attempts: int
    route: str | None = None
    error: str | None = None


ClientFactory = Callable[[str], httpx.Client]


def proxy_url(address: str) -> str | None:
    """httpx wants a scheme on proxy URLs; bare ``host:port`` means plain HTTP."""
    if not address:
        return None
    return address if "://" in address else f"http://{address}"


def default_client_factory(timeout: float = 30.0) -> ClientFactory:
    def build(address: str) -> httpx.Client:
        return httpx.Client(proxy=proxy_url(address), timeout=timeout, follow_redirects=True)

    return build


class RouteClients:
    """One lazily-built httpx.Client per route address, shared by all workers."""

    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory
        self._clients: dict[str, httpx.Client] = {}
        self._lock = threading.Lock()

    def get(self, address: str) -> httpx.Client:
        with self._lock:
            client = self._clients.get(address)
            if client is None:
                client = self._factory(address)
                self._clients[address] = client
            return client

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()


def write_artifact(cid: int, path: Path, body: bytes) -> None:
    """Write ``body`` to ``path`` through a temp file in the same directory.

    Raises:
        ArtifactWriteError: On any local I/O failure
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=f".{cid}.", suffix=".part", delete=False
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(body)
        os.chmod(tmp_name, ARTIFACT_MODE)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
        raise ArtifactWriteError(cid, str(path), str(e)) from e


class Fetcher:
    """Runs the fetch-retry state machine; one ``run`` call per WorkItem."""

    def __init__(
        self,
        pool: RoutePool,
        clients: RouteClients,
        negative_cache: NegativeCache | None = None,
        *,
        url_template: str = DEFAULT_URL_TEMPLATE,
        max_retries: int = 16,
        retry_backoff_seconds: float = 3.0,
        min_bytes: int = 1024,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pool = pool
        self.clients = clients
        self.negative_cache = negative_cache
        self.url_template = url_template
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.min_bytes = min_bytes
        self._sleep = sleep

    def url_for(self, cid: int) -> str:
        return self.url_template.format(cid=cid)

    def request(self, cid: int, handle: RouteHandle) -> FetchOutcome:
        """Issue one GET through ``handle``'s route and classify the response."""
        client = self.clients.get(handle.address)
        try:
            response = client.get(self.url_for(cid))
        except httpx.HTTPError as e:
            return TransientError(f"{type(e).__name__}: {e}")

        if response.status_code == 404:
            return NotFound()
        if not response.is_success:
            return TransientError(f"HTTP {response.status_code}")

        body = response.content
        if len(body) < self.min_bytes:
            return TooSmall(len(body))
        return Success(body)

    def _mark_absent(self, cid: int) -> None:
        if self.negative_cache is None:
            return
        try:
            self.negative_cache.mark_absent(cid)
        except StoreWriteError as e:
            logger.warning(
                "Could not record negative result for cid=%d: %s", cid, e,
                extra={"cid": cid, "error": str(e)},
            )

    def run(self, cid: int, path: str | Path) -> FetchReport:
        """Drive ``cid`` to a terminal state.

        Raises:
            ArtifactWriteError: If the downloaded body cannot be written
        """
        path = Path(path)
        state = FetchState.IDLE
        handle: RouteHandle | None = None
        attempts = 0
        retries = 0
        route: str | None = None
        error: str | None = None

        while state not in TERMINAL_STATES:
            if state is FetchState.IDLE:
                state = FetchState.ACQUIRING

            elif state is FetchState.ACQUIRING:
                handle = self.pool.acquire()
                route = handle.label
                state = FetchState.FETCHING

            elif state is FetchState.FETCHING:
                attempts += 1
                try:
                    outcome = self.request(cid, handle)
                    state = TRANSITIONS[type(outcome)]
                    if isinstance(outcome, Success):
                        write_artifact(cid, path, outcome.body)
                    elif isinstance(outcome, TooSmall):
                        error = f"payload too small ({outcome.size} bytes)"
                    elif isinstance(outcome, TransientError):
                        error = outcome.message
                finally:
                    self.pool.release(handle)
                    handle = None

                if state is FetchState.PERMANENTLY_ABSENT:
                    error = "HTTP 404"
                    self._mark_absent(cid)

            elif state is FetchState.RETRYABLE:
                retries += 1
                logger.info(
                    "Fetch attempt failed: cid=%d, route=%s, attempt=%d, error=%s",
                    cid, route, attempts, error,
                    extra={"cid": cid, "route": route, "attempt": attempts, "error": error},
                )
                if retries > self.max_retries:
                    state = FetchState.GIVEN_UP
                else:
                    self._sleep(self.retry_backoff_seconds)
                    state = FetchState.ACQUIRING

        if state is FetchState.GIVEN_UP:
            logger.warning(
                "Giving up on cid=%d after %d attempts: %s", cid, attempts, error,
                extra={"cid": cid, "route": route, "error": error},
            )
        elif state is FetchState.SUCCEEDED and attempts > 1:
            logger.info(
                "Download succeeded after retries: cid=%d, attempts=%d", cid, attempts,
                extra={"cid": cid, "route": route, "attempts": attempts},
            )

        return FetchReport(
            cid=cid,
            state=state,
            attempts=attempts,
            route=route,
            error=None if state is FetchState.SUCCEEDED else error,
        )
