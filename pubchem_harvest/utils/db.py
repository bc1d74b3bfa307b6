"""
Database utilities for SQLite document storage.

Provides connection management, schema initialization and the small set of
document operations the pipeline depends on:

- upsert-by-key (store-assigned created_at / updated_at)
- exists-by-key
- count-by-filter
- insert-many (batch upsert)
- stream-by-filter
- delete-by-key

Documents live in one table partitioned by collection name. Filters are
equality matches on top-level JSON fields of the stored document.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

import orjson
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pubchem_harvest.utils.errors import StoreInitError, StoreWriteError

logger = logging.getLogger(__name__)

COLLECTION_CID_NOT_FOUND = "cid_not_found"
COLLECTION_MOLECULAR = "molecular"
COLLECTION_FILTER_SOLUBILITY = "filter_smiles_solubility"
COLLECTION_FILTER_ABSORPTION = "filter_absorption"

KEY_CREATE_TIME = "createTime"
KEY_UPDATE_TIME = "updateTime"

_UPSERT_SQL = """
    INSERT INTO documents (collection, key, data, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?)
    ON CONFLICT (collection, key) DO UPDATE SET
        data = excluded.data,
        updated_at = excluded.updated_at
"""

_write_retry = retry(
    retry=retry_if_exception_type(sqlite3.OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _where(collection: str, filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    clauses = ["collection = ?"]
    params: list[Any] = [collection]
    for field, value in (filters or {}).items():
        if not field.replace("_", "").isalnum():
            raise ValueError(f"Invalid filter field: {field!r}")
        clauses.append(f"json_extract(data, '$.{field}') = ?")
        params.append(value)
    return " AND ".join(clauses), params


class DocumentStore:
    """SQLite-backed document store keyed by (collection, key).

    A fresh connection is opened per operation so the store can be shared
    freely between worker threads; SQLite serializes the writers.
    """

    def __init__(self, path: str, timeout: float = 10.0) -> None:
        self.path = path
        self.timeout = timeout

    def get_conn(self) -> sqlite3.Connection:
        """
        Get SQLite database connection with dict-friendly row factory.

        Returns:
            SQLite connection with row_factory set to sqlite3.Row

        Raises:
            sqlite3.Error: If connection fails
        """
        db_path = Path(self.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_conn()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        """
        Initialize database schema by creating required tables if they don't exist.

        Raises:
            StoreInitError: If the database cannot be opened or the schema created
        """
        try:
            with self.connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        key TEXT NOT NULL,
                        data TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (collection, key)
                    )
                """)
        except (sqlite3.Error, OSError) as e:
            raise StoreInitError(f"Failed to initialize store at {self.path}: {e}") from e

        logger.info("DB schema ready: path=%s", self.path)

    @_write_retry
    def _execute_write(self, sql: str, rows: list[tuple[Any, ...]]) -> int:
        with self.connection() as conn:
            cursor = conn.executemany(sql, rows)
            return cursor.rowcount

    def upsert(self, collection: str, key: Any, document: Mapping[str, Any]) -> None:
        """Insert or update one document.

        ``created_at`` is kept from the first write, ``updated_at`` is refreshed.

        Raises:
            StoreWriteError: If the write fails after retries
        """
        now = _now()
        row = (collection, str(key), orjson.dumps(dict(document)).decode("utf-8"), now, now)
        try:
            self._execute_write(_UPSERT_SQL, [row])
        except sqlite3.Error as e:
            raise StoreWriteError(f"upsert {collection}/{key} failed: {e}") from e

    def insert_many(
        self,
        collection: str,
        documents: Iterable[Mapping[str, Any]],
        key_field: str,
    ) -> int:
        """Batch upsert, keyed on ``document[key_field]``.

        Returns:
            Number of documents written

        Raises:
            StoreWriteError: If the batch fails after retries
        """
        now = _now()
        rows = [
            (collection, str(doc[key_field]), orjson.dumps(dict(doc)).decode("utf-8"), now, now)
            for doc in documents
        ]
        if not rows:
            return 0
        try:
            self._execute_write(_UPSERT_SQL, rows)
        except sqlite3.Error as e:
            raise StoreWriteError(
                f"insert_many into {collection} failed ({len(rows)} documents): {e}"
            ) from e
        return len(rows)

    def exists(self, collection: str, key: Any) -> bool:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM documents WHERE collection = ? AND key = ? LIMIT 1",
                (collection, str(key)),
            ).fetchone()
        return row is not None

    def count(self, collection: str, filters: Mapping[str, Any] | None = None) -> int:
        where, params = _where(collection, filters)
        with self.connection() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM documents WHERE {where}", params).fetchone()
        return int(row[0])

    def stream(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Yield matching documents in key insertion order.

        Each document carries the store timestamps under createTime / updateTime.
        """
        where, params = _where(collection, filters)
        conn = self.get_conn()
        try:
            cursor = conn.execute(
                f"SELECT data, created_at, updated_at FROM documents WHERE {where} ORDER BY rowid",
                params,
            )
            for row in cursor:
                document = orjson.loads(row["data"])
                document[KEY_CREATE_TIME] = row["created_at"]
                document[KEY_UPDATE_TIME] = row["updated_at"]
                yield document
        finally:
            conn.close()

    def delete(self, collection: str, key: Any) -> bool:
        """Delete one document. Returns True if something was removed."""
        try:
            removed = self._execute_write(
                "DELETE FROM documents WHERE collection = ? AND key = ?",
                [(collection, str(key))],
            )
        except sqlite3.Error as e:
            raise StoreWriteError(f"delete {collection}/{key} failed: {e}") from e
        logger.info("db delete: collection=%s, key=%s, removed=%d", collection, key, removed)
        return removed > 0


def open_store(path: str, timeout: float = 10.0) -> DocumentStore:
    """Create a store and make sure its schema exists.

    Raises:
        StoreInitError: If initialization fails
    """
    store = DocumentStore(path, timeout=timeout)
    store.init_schema()
    return store
