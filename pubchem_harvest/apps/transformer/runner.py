"""
Transformer Runner - Artifact Extraction into the Document Store

Walks the downloaded artifact tree in CID order, parses every artifact,
extracts the records of one fixed profile and hands them to the batch sink.

Features:
- Thread pool over artifacts (parse + extract are independent per file)
- Optional byte prefilter per profile to skip parsing irrelevant artifacts
- Resume for the molecular profile: records already stored are counted and
  the walk restarts one step before that point
- Per-run summary logging

Usage:
    python -m pubchem_harvest.apps.transformer              # molecular profile
    python -m pubchem_harvest.apps.transformer -n solubility
"""

import logging
import threading
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Iterator

import orjson
from pydantic import ValidationError

from pubchem_harvest.apps.downloader.paths import id_from_path, iter_artifacts
from pubchem_harvest.apps.saver.sink import BatchSink
from pubchem_harvest.apps.transformer.records import Profile
from pubchem_harvest.utils.config import Settings
from pubchem_harvest.utils.db import DocumentStore
from pubchem_harvest.utils.schemas import SOURCE, CompoundDocument

logger = logging.getLogger(__name__)

EXTRACTED = "extracted"
SKIPPED = "skipped"
PREFILTERED = "prefiltered"
PARSE_ERROR = "parse_error"
READ_ERROR = "read_error"


def resume_start(stored: int, step: int) -> int:
    """First CID to revisit when ``stored`` records already exist.

    Restarts one step behind the stored count so a partially flushed tail
    is regenerated.
    """
    if stored <= step:
        return 1
    return max(1, ((stored - step) // step) * step)


class TransformerRunner:
    """
    Extraction pass over the artifact tree for one profile.

    Handles:
    - Artifact enumeration and resume offset
    - JSON parsing and schema validation
    - Record hand-off to the BatchSink
    """

    def __init__(self, settings: Settings, store: DocumentStore, profile: Profile) -> None:
        self.settings = settings
        self.store = store
        self.profile = profile
        self.data_dir = Path(settings.DATA_DIR)
        self.shutdown_event = threading.Event()
        self._stats: Counter = Counter()
        self._stats_lock = threading.Lock()

        logger.info(
            "TransformerRunner initialized: profile=%s, collection=%s, data_dir=%s",
            profile.name, profile.collection, self.data_dir,
        )

    def start_cid(self, resume: bool) -> int:
        if not resume:
            return 1
        stored = self.store.count(self.profile.collection, {"source": SOURCE})
        start = resume_start(stored, self.settings.SAVE_STEP)
        logger.info("Found %d stored records, resuming from cid=%d", stored, start)
        return start

    def artifacts(self, start_cid: int = 1) -> Iterator[Path]:
        for path in iter_artifacts(self.data_dir, self.settings.MIN_ARTIFACT_BYTES):
            try:
                cid = id_from_path(path)
            except ValueError as e:
                logger.warning("Skipping misplaced artifact: %s", e)
                continue
            if cid >= start_cid:
                yield path

    def process(self, path: Path, sink: BatchSink) -> str:
        """Extract one artifact into ``sink``. Returns the outcome label."""
        try:
            raw = path.read_bytes()
        except OSError as e:
            logger.warning("Failed to read artifact: path=%s, error=%s", path, e)
            return READ_ERROR

        if not self.profile.wants(raw):
            return PREFILTERED

        try:
            document = CompoundDocument.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.warning(
                "Failed to parse artifact: path=%s", path,
                extra={"path": str(path), "error": str(e).split("\n")[0]},
            )
            return PARSE_ERROR

        record = self.profile.build(document)
        if record is None:
            return SKIPPED

        sink.add(record)
        return EXTRACTED

    def run(self, resume: bool = False) -> Counter:
        """Run one extraction pass; returns outcome counts."""
        workers = max(1, self.settings.JOBS)
        start_cid = self.start_cid(resume)
        slots = threading.BoundedSemaphore(workers * 2)
        start_time = time.time()
        self._stats = Counter()

        def done(future: Future) -> None:
            slots.release()
            try:
                outcome = future.result()
            except Exception as e:
                logger.error("Unexpected extraction failure: %s", e, exc_info=e)
                outcome = PARSE_ERROR
            with self._stats_lock:
                self._stats[outcome] += 1

        with BatchSink(
            self.store, self.profile.collection, batch_size=self.settings.BATCH_SIZE
        ) as sink:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as executor:
                for path in self.artifacts(start_cid):
                    if self.shutdown_event.is_set():
                        logger.info("Shutdown requested, stopping at %s", path)
                        break
                    slots.acquire()
                    executor.submit(self.process, path, sink).add_done_callback(done)

        stats = Counter(self._stats)
        logger.info(
            "Extraction complete: profile=%s, elapsed=%.3fs, %s",
            self.profile.name, time.time() - start_time,
            ", ".join(f"{k}={v}" for k, v in sorted(stats.items())),
        )
        return stats
