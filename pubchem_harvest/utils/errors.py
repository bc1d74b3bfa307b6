"""
Error taxonomy shared by the downloader, transformer and saver apps.

Fetch failures are not exceptions: a 404 is an outcome that ends in the
negative cache, and transient failures are outcomes the fetcher retries.
Artifacts that carry no relevant data are not errors either; the extraction
functions simply return None.
"""


class HarvestError(Exception):
    """Base class for all pipeline errors."""


class ArtifactWriteError(HarvestError):
    """Local I/O failure while persisting an artifact. Fatal for that item only."""

    def __init__(self, cid: int, path: str, message: str) -> None:
        super().__init__(f"cid={cid}: failed to write {path}: {message}")
        self.cid = cid
        self.path = path


class StoreWriteError(HarvestError):
    """A write to the document store failed after its bounded retries."""


class StoreInitError(HarvestError):
    """The document store could not be opened or its schema created."""
