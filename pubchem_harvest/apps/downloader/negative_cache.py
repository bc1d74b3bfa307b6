"""
Negative-result cache for CIDs that returned 404 upstream.

Once an id is marked absent it is never fetched again; removing it is an
explicit operation (``forget``) and never happens as part of a download pass.
"""

import logging
import sqlite3

from pubchem_harvest.utils.db import COLLECTION_CID_NOT_FOUND, DocumentStore
from pubchem_harvest.utils.schemas import NegativeCacheEntry

logger = logging.getLogger(__name__)


class NegativeCache:
    def __init__(self, store: DocumentStore, collection: str = COLLECTION_CID_NOT_FOUND) -> None:
        self.store = store
        self.collection = collection

    def exists(self, cid: int) -> bool:
        """Whether ``cid`` is known to be absent.

        A failing lookup counts as a miss: the worst case is one extra fetch.
        """
        try:
            return self.store.exists(self.collection, cid)
        except sqlite3.Error as e:
            logger.warning(
                "Negative cache lookup failed for cid=%d: %s", cid, e,
                extra={"cid": cid, "error": str(e)},
            )
            return False

    def mark_absent(self, cid: int) -> None:
        """Record ``cid`` as permanently absent.

        Raises:
            StoreWriteError: If the entry could not be persisted
        """
        entry = NegativeCacheEntry(cid=str(cid))
        self.store.upsert(self.collection, entry.cid, entry.model_dump(mode="json"))
        logger.debug("Marked absent", extra={"cid": cid})

    def forget(self, cid: int) -> bool:
        """Remove ``cid`` from the cache so the next pass fetches it again."""
        return self.store.delete(self.collection, cid)
