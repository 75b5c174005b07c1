from typing import Optional
from uuid import UUID

from cachetools import LRUCache

from ..models import Document, DocumentStatus


class DocumentCache:
    """Bounded LRU of processed document records, keyed by document id.

    Readers take a ``token()`` before loading a record from the store and pass
    it to ``put``; a snapshot loaded before the latest eviction is dropped
    instead of cached. The cache is per process: run several workers with
    ``max_size=0``, which disables it.
    """

    def __init__(self, max_size: int = 256) -> None:
        self.enabled = max_size > 0
        self._cache: LRUCache = LRUCache(maxsize=max(max_size, 1))
        self._epoch = 0

    def token(self) -> int:
        return self._epoch

    def get(self, document_id: UUID, owner_id: str) -> Optional[Document]:
        doc = self._cache.get(document_id)
        if doc is None or doc.owner_id != owner_id:
            return None
        return doc

    def put(self, doc: Document, token: int) -> bool:
        """Cache ``doc`` if it is processed and nothing was evicted since ``token``."""
        if doc.status != DocumentStatus.PROCESSED.value:
            self.evict(doc.id)
            return False
        if not self.enabled or token != self._epoch:
            return False
        self._cache[doc.id] = doc
        return True

    def evict(self, document_id: UUID) -> None:
        self._epoch += 1
        self._cache.pop(document_id, None)

    def __len__(self) -> int:
        return len(self._cache)
