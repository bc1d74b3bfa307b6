"""
Export stored records to JSONL.

Streams documents matching a filter out of the store and writes one JSON
object per line, the same format the rest of the tooling reads.
"""

import logging
import time
from pathlib import Path
from typing import Any, Mapping

import orjson

from pubchem_harvest.utils.db import DocumentStore

logger = logging.getLogger(__name__)


def export_jsonl(
    store: DocumentStore,
    collection: str,
    output: str | Path,
    filters: Mapping[str, Any] | None = None,
) -> int:
    """Write every matching document of ``collection`` to ``output``.

    Returns:
        Number of documents written
    """
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    start_time = time.time()
    count = 0

    with open(output, "wb") as f:
        for document in store.stream(collection, filters):
            f.write(orjson.dumps(document))
            f.write(b"\n")
            count += 1

    logger.info(
        "Export complete: collection=%s, path=%s, documents=%d, elapsed=%.3fs",
        collection, output, count, time.time() - start_time,
    )
    return count
