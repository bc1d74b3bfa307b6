import logging
import os

import httpx
import pytest

from pubchem_harvest.apps.downloader.fetcher import (
    ARTIFACT_MODE,
    Fetcher,
    FetchState,
    NotFound,
    RouteClients,
    Success,
    TooSmall,
    TransientError,
    proxy_url,
    write_artifact,
)
from pubchem_harvest.apps.downloader.paths import is_present, path_for
from pubchem_harvest.apps.downloader.routes import RoutePool
from pubchem_harvest.utils.errors import ArtifactWriteError, StoreWriteError
from pubchem_harvest.utils.logging import TEXT_FORMAT
from tests.conftest import mock_client_factory

BODY = b"{" + b" " * 2048 + b"}"


class RecordingCache:
    def __init__(self, fail: bool = False) -> None:
        self.marked: list[int] = []
        self.fail = fail

    def exists(self, cid: int) -> bool:
        return cid in self.marked

    def mark_absent(self, cid: int) -> None:
        self.marked.append(cid)
        if self.fail:
            raise StoreWriteError("store unavailable")


def scripted(*responses):
    """Handler replaying ``responses`` in order; exceptions are raised."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item.status_code, content=item.content)

    handler.calls = calls
    return handler


def make_fetcher(handler, sleep, cache=None, max_retries=16, routes=("",), capacity=1):
    pool = RoutePool(list(routes), capacity=capacity, backoff_seconds=0.0, sleep=sleep)
    fetcher = Fetcher(
        pool,
        RouteClients(mock_client_factory(handler)),
        cache,
        url_template="https://pubchem.test/compound/{cid}/JSON/",
        max_retries=max_retries,
        retry_backoff_seconds=3.0,
        min_bytes=1024,
        sleep=sleep,
    )
    return fetcher, pool


def test_not_found_is_permanent_after_one_attempt(data_dir, sleep):
    handler = scripted(httpx.Response(404))
    cache = RecordingCache()
    fetcher, pool = make_fetcher(handler, sleep, cache)
    target = data_dir / path_for(42)

    report = fetcher.run(42, target)

    assert report.state is FetchState.PERMANENTLY_ABSENT
    assert report.attempts == 1
    assert cache.marked == [42]
    assert len(handler.calls) == 1
    assert sleep.calls == []
    assert not target.exists()
    assert pool.in_use() == 0


def test_not_found_without_negative_cache(data_dir, sleep):
    fetcher, _ = make_fetcher(scripted(httpx.Response(404)), sleep, cache=None)

    report = fetcher.run(7, data_dir / path_for(7))

    assert report.state is FetchState.PERMANENTLY_ABSENT
    assert report.error == "HTTP 404"


def test_negative_cache_write_failure_does_not_block(data_dir, sleep):
    cache = RecordingCache(fail=True)
    fetcher, pool = make_fetcher(scripted(httpx.Response(404)), sleep, cache)

    report = fetcher.run(42, data_dir / path_for(42))

    assert report.state is FetchState.PERMANENTLY_ABSENT
    assert cache.marked == [42]
    assert pool.in_use() == 0


@pytest.mark.parametrize("failures", [1, 3])
def test_transient_failures_then_success(data_dir, sleep, failures):
    handler = scripted(*([httpx.Response(503)] * failures), httpx.Response(200, content=BODY))
    fetcher, pool = make_fetcher(handler, sleep, max_retries=failures)
    target = data_dir / path_for(1234)

    report = fetcher.run(1234, target)

    assert report.state is FetchState.SUCCEEDED
    assert report.attempts == failures + 1
    assert report.error is None
    assert target.read_bytes() == BODY
    assert is_present(target)
    assert sleep.calls == [3.0] * failures
    assert pool.in_use() == 0


def test_gives_up_when_failures_exceed_retry_bound(data_dir, sleep):
    failures = 3
    handler = scripted(*([httpx.Response(500)] * failures), httpx.Response(200, content=BODY))
    fetcher, pool = make_fetcher(handler, sleep, max_retries=failures - 1)
    target = data_dir / path_for(99)

    report = fetcher.run(99, target)

    assert report.state is FetchState.GIVEN_UP
    assert report.attempts == failures
    assert report.error == "HTTP 500"
    assert not target.exists()
    assert not target.parent.exists() or not any(target.parent.iterdir())
    assert pool.in_use() == 0


def test_undersized_body_is_retried(data_dir, sleep):
    handler = scripted(httpx.Response(200, content=b"{}"), httpx.Response(200, content=BODY))
    fetcher, _ = make_fetcher(handler, sleep)

    report = fetcher.run(5, data_dir / path_for(5))

    assert report.state is FetchState.SUCCEEDED
    assert report.attempts == 2


def test_transport_errors_are_retried(data_dir, sleep):
    handler = scripted(
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
        httpx.Response(200, content=BODY),
    )
    fetcher, _ = make_fetcher(handler, sleep)

    report = fetcher.run(5, data_dir / path_for(5))

    assert report.state is FetchState.SUCCEEDED
    assert report.attempts == 3


def test_request_classification(sleep):
    fetcher, pool = make_fetcher(
        scripted(
            httpx.Response(200, content=BODY),
            httpx.Response(200, content=b"tiny"),
            httpx.Response(404),
            httpx.Response(429),
        ),
        sleep,
    )
    outcomes = []
    for _ in range(4):
        with pool.lease() as handle:
            outcomes.append(fetcher.request(1, handle))

    assert outcomes == [Success(BODY), TooSmall(4), NotFound(), TransientError("HTTP 429")]


def test_request_targets_cid_url(data_dir, sleep):
    handler = scripted(httpx.Response(200, content=BODY))
    fetcher, _ = make_fetcher(handler, sleep)

    fetcher.run(2244, data_dir / path_for(2244))

    assert str(handler.calls[0].url) == "https://pubchem.test/compound/2244/JSON/"


def test_write_failure_is_fatal_for_item_and_releases_route(tmp_path, sleep):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file where a directory should be")
    fetcher, pool = make_fetcher(scripted(httpx.Response(200, content=BODY)), sleep)

    with pytest.raises(ArtifactWriteError):
        fetcher.run(1, blocker / "1000" / "1.json")

    assert pool.in_use() == 0


def test_retries_rotate_through_free_routes(data_dir, sleep):
    handler = scripted(httpx.Response(502), httpx.Response(200, content=BODY))
    fetcher, pool = make_fetcher(handler, sleep, routes=("", "proxy-a:3128"))
    blocker = pool.try_acquire()

    report = fetcher.run(8, data_dir / path_for(8))

    assert report.route == "proxy-a:3128"
    assert report.state is FetchState.SUCCEEDED
    pool.release(blocker)
    assert pool.in_use() == 0


def test_proxy_url():
    assert proxy_url("") is None
    assert proxy_url("192.168.2.25:28080") == "http://192.168.2.25:28080"
    assert proxy_url("socks5://10.0.0.1:1080") == "socks5://10.0.0.1:1080"


def test_route_clients_are_cached_per_address():
    built = []

    def factory(address):
        built.append(address)
        return httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    clients = RouteClients(factory)
    assert clients.get("") is clients.get("")
    clients.get("proxy:1")
    clients.close()

    assert built == ["", "proxy:1"]


def test_text_log_lines_name_the_cid(data_dir, sleep, caplog):
    fetcher, _ = make_fetcher(scripted(httpx.Response(500)), sleep, max_retries=0)

    with caplog.at_level(logging.INFO, logger="pubchem_harvest"):
        report = fetcher.run(987654, data_dir / path_for(987654))

    formatter = logging.Formatter(TEXT_FORMAT)
    lines = [formatter.format(r) for r in caplog.records if r.name.startswith("pubchem_harvest")]
    assert report.state is FetchState.GIVEN_UP
    assert any("WARNING" in line and "987654" in line for line in lines)
    assert all("987654" in line for line in lines)


def test_written_artifact_uses_umask_mode(tmp_path):
    umask = os.umask(0)
    os.umask(umask)
    target = tmp_path / "1000000" / "1000" / "3.json"

    write_artifact(3, target, BODY)

    assert ARTIFACT_MODE == 0o666 & ~umask
    assert target.stat().st_mode & 0o777 == ARTIFACT_MODE
    assert list(target.parent.iterdir()) == [target]
