"""
Batch upsert sink.

Producers call ``add`` from any thread. Once ``batch_size`` records are
buffered the buffer is swapped out under the lock and written with one
``insert_many`` call, so no record can fall between buffering and flushing.

A failed flush is logged and its batch dropped: the artifacts are still on
disk and the next extraction pass regenerates the records.
"""

import logging
import threading
from typing import Any

from pydantic import BaseModel

from pubchem_harvest.utils.db import DocumentStore
from pubchem_harvest.utils.errors import StoreWriteError

logger = logging.getLogger(__name__)


class BatchSink:
    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        batch_size: int = 1000,
        key_field: str = "cid",
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.store = store
        self.collection = collection
        self.batch_size = batch_size
        self.key_field = key_field
        self.written = 0
        self.dropped = 0
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def __enter__(self) -> "BatchSink":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def add(self, record: BaseModel) -> None:
        document = record.model_dump(mode="json")
        with self._lock:
            self._buffer.append(document)
            if len(self._buffer) < self.batch_size:
                return
            batch, self._buffer = self._buffer, []
        self._write(batch)

    def flush(self) -> None:
        with self._lock:
            batch, self._buffer = self._buffer, []
        if batch:
            self._write(batch)

    def close(self) -> None:
        self.flush()
        logger.info(
            "Sink closed: collection=%s, written=%d, dropped=%d",
            self.collection, self.written, self.dropped,
        )

    def _write(self, batch: list[dict[str, Any]]) -> None:
        try:
            count = self.store.insert_many(self.collection, batch, key_field=self.key_field)
        except StoreWriteError as e:
            with self._lock:
                self.dropped += len(batch)
            logger.error(
                "Batch flush failed, dropping batch: collection=%s, size=%d, first_key=%s",
                self.collection, len(batch), batch[0].get(self.key_field),
                extra={
                    "collection": self.collection,
                    "size": len(batch),
                    "first_key": batch[0].get(self.key_field),
                    "error": str(e),
                },
            )
            return

        with self._lock:
            self.written += count
        logger.info("Flushed batch: collection=%s, size=%d", self.collection, count)
