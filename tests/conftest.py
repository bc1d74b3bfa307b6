from pathlib import Path
from typing import Callable

import httpx
import pytest

from pubchem_harvest.utils.config import Settings
from pubchem_harvest.utils.db import DocumentStore, open_store


class SleepRecorder:
    """Stands in for time.sleep; records requested delays without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture()
def store(tmp_path: Path) -> DocumentStore:
    return open_store(str(tmp_path / "db" / "test.db"))


@pytest.fixture()
def make_settings(tmp_path: Path, data_dir: Path) -> Callable[..., Settings]:
    def build(**overrides) -> Settings:
        values = {
            "DATA_DIR": str(data_dir),
            "SQLITE_PATH": str(tmp_path / "db" / "test.db"),
            "RETRY_BACKOFF_SECONDS": 0.0,
            "ACQUIRE_BACKOFF_SECONDS": 0.0,
            "BLOCK_PAUSE_SECONDS": 0.0,
            "API_URL_TEMPLATE": "https://pubchem.test/compound/{cid}/JSON/",
            "PROXY_ROUTES": [""],
        }
        values.update(overrides)
        return Settings(**values)

    return build


def mock_client_factory(handler: Callable[[httpx.Request], httpx.Response]):
    """Client factory whose clients answer every request with ``handler``."""

    def build(address: str) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    return build
