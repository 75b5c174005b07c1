import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import structlog

from ..errors import DocChatError, ErrorKind, IngestionInProgress, StorageError
from ..models import Document, DocumentStatus, utcnow
from .cache import DocumentCache
from .records import RecordStore, SearchPage, contains_all, metadata_matches
from .storage import LocalStorage, object_path, shorten_file_name
from .tasks import IngestionDispatcher
from .validation import FileValidator
from .vector_index import VectorIndex

logger = structlog.get_logger(logger_name=__name__)

DELETING_MESSAGE = "Document is being deleted"
UNEXPECTED_UPLOAD_MESSAGE = "The upload failed because of an unexpected error."


@dataclass
class UploadResult:
    file_name: str
    success: bool
    document: Optional[Document] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FileDetails:
    document_id: UUID
    name: str
    file_path: str
    public_url: str
    size_bytes: int


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DocumentService:
    """Upload, retry, status, listing, search and deletion of a user's documents."""

    def __init__(
        self,
        records: RecordStore,
        storage: LocalStorage,
        validator: FileValidator,
        index: VectorIndex,
        dispatcher: IngestionDispatcher,
        cache: DocumentCache,
    ) -> None:
        self._records = records
        self._storage = storage
        self._validator = validator
        self._index = index
        self._dispatcher = dispatcher
        self._cache = cache

    async def upload(self, owner_id: str, file_name: str, data: bytes) -> Document:
        """Store the file, create its ``uploading`` record and start ingestion.

        Returns as soon as the record exists; ingestion continues in the background.
        """
        name = shorten_file_name(os.path.basename(file_name or ""))
        fmt = self._validator.validate(name, len(data))

        path = object_path(owner_id, name)
        await self._storage.upload(path, data)
        try:
            doc = await self._records.create(
                owner_id,
                name,
                path,
                len(data),
                fmt.value,
                metadata={
                    "originalFileName": file_name,
                    "size": len(data),
                    "publicUrl": self._storage.get_public_url(path),
                },
            )
        except Exception:
            logger.exception("document_record_failed", path=path)
            await self._storage.delete(path)
            raise

        self._dispatcher.dispatch(doc.id, owner_id)
        return doc

    async def upload_many(self, owner_id: str, files: Sequence[Tuple[str, bytes]]) -> List[UploadResult]:
        """Upload each file on its own; one failure does not stop the rest."""
        results = []
        for file_name, data in files:
            try:
                doc = await self.upload(owner_id, file_name, data)
            except DocChatError as e:
                logger.warning("batch_upload_rejected", file_name=file_name, kind=e.kind.value, error=e.message)
                results.append(UploadResult(file_name, False, error_kind=e.kind.value, error=e.user_message))
                continue
            except Exception:
                logger.exception("batch_upload_failed", file_name=file_name)
                results.append(
                    UploadResult(file_name, False, error_kind=ErrorKind.INTERNAL.value, error=UNEXPECTED_UPLOAD_MESSAGE)
                )
                continue
            results.append(UploadResult(file_name, True, document=doc))
        logger.info("batch_upload", files=len(results), failed=sum(1 for r in results if not r.success))
        return results

    async def retry(self, document_id: UUID, owner_id: str) -> Document:
        doc = await self._records.require(document_id, owner_id)
        if doc.status == DocumentStatus.PROCESSING.value:
            raise IngestionInProgress(f"Document {document_id} is already processing")
        self._cache.evict(document_id)
        self._dispatcher.dispatch(document_id, owner_id)
        logger.info("ingestion_retry", document_id=str(document_id), previous_status=doc.status)
        return doc

    async def get(self, document_id: UUID, owner_id: str) -> Document:
        return await self._records.require(document_id, owner_id)

    async def get_status(self, document_id: UUID, owner_id: str) -> Document:
        return await self._records.require(document_id, owner_id)

    async def file_details(self, document_id: UUID, owner_id: str) -> FileDetails:
        doc = await self._records.require(document_id, owner_id)
        return FileDetails(
            document_id=doc.id,
            name=doc.name,
            file_path=doc.storage_path,
            public_url=self._storage.get_public_url(doc.storage_path),
            size_bytes=doc.size_bytes,
        )

    async def update_metadata(self, document_id: UUID, owner_id: str, fields: Dict[str, Any]) -> Document:
        doc = await self._records.update_metadata(document_id, owner_id, fields)
        self._cache.evict(document_id)
        return doc

    async def list_documents(self, owner_id: str) -> List[Document]:
        return await self._records.list_by_owner(owner_id)

    # Search

    async def search(self, owner_id: str, query: str, limit: int = 20, offset: int = 0) -> SearchPage:
        return await self._records.search(owner_id, name_query=query.strip(), limit=limit, offset=offset)

    async def search_by_metadata(
        self, owner_id: str, metadata: Dict[str, Any], limit: int = 20, offset: int = 0
    ) -> SearchPage:
        filters = {k: v for k, v in metadata.items() if v is not None}
        return await self._records.search(
            owner_id,
            where=lambda doc: metadata_matches(doc.meta or {}, filters),
            limit=limit,
            offset=offset,
        )

    async def recent(self, owner_id: str, days: int = 7, limit: int = 10) -> List[Document]:
        cutoff = utcnow() - timedelta(days=days)
        page = await self._records.search(owner_id, created_from=cutoff, limit=limit)
        return page.results

    async def advanced_search(
        self,
        owner_id: str,
        *,
        query: Optional[str] = None,
        file_type: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> SearchPage:
        """Name, type, size and date filters plus exact category/status and all-of tags."""

        def matches(doc: Document) -> bool:
            meta = doc.meta or {}
            if category and meta.get("category") != category:
                return False
            if status and meta.get("status") != status:
                return False
            if tags:
                stored = meta.get("tags")
                if not isinstance(stored, list) or not contains_all(stored, tags):
                    return False
            return True

        return await self._records.search(
            owner_id,
            name_query=(query or "").strip() or None,
            file_type=file_type,
            min_size=min_size,
            max_size=max_size,
            created_from=as_utc(start_date),
            created_to=as_utc(end_date),
            where=matches,
            limit=limit,
            offset=offset,
        )

    async def delete(self, document_id: UUID, owner_id: str) -> None:
        """Remove vectors, chat turns and the record, then the stored file.

        The record is moved to ``error`` first so chat never sees a processed
        document whose vectors are already gone. A file left behind by a
        storage failure is logged and does not fail the delete.
        """
        doc = await self._records.require(document_id, owner_id)
        self._cache.evict(document_id)
        await self._records.update_status(
            document_id, owner_id, DocumentStatus.ERROR, chunk_count=0, error_message=DELETING_MESSAGE
        )
        removed = await self._index.delete_all(document_id, owner_id)
        turns = await self._records.delete_turns(document_id, owner_id)
        await self._records.delete(document_id, owner_id)
        try:
            await self._storage.delete(doc.storage_path)
        except StorageError as e:
            logger.warning("orphaned_file", path=doc.storage_path, error=e.message)
        logger.info("document_deleted", document_id=str(document_id), vectors=removed, chat_turns=turns)
