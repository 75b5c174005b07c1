import asyncio
import io
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict
from uuid import UUID

import structlog

from ..errors import (
    DocChatError,
    EmbeddingServiceError,
    EmptyContent,
    IngestionInProgress,
    IngestionTimeout,
    ProcessingFailed,
)
from ..models import Document, DocumentStatus, utcnow
from ..utils.text import TextChunker
from .cache import DocumentCache
from .embedding import EmbeddingGateway
from .extract import extract_text
from .records import RecordStore
from .storage import LocalStorage
from .validation import FileValidator
from .vector_index import VectorIndex, VectorRecord, vector_id

logger = structlog.get_logger(logger_name=__name__)

Extractor = Callable[[str, bytes], Awaitable[str]]


@dataclass
class IngestionResult:
    document_id: UUID
    chunk_count: int
    text_length: int
    duration_seconds: float


class IngestionService:

    def __init__(
        self,
        records: RecordStore,
        storage: LocalStorage,
        validator: FileValidator,
        chunker: TextChunker,
        embedder: EmbeddingGateway,
        index: VectorIndex,
        cache: DocumentCache,
        *,
        extractor: Extractor = extract_text,
        min_text_length: int = 10,
        timeout_seconds: float = 300.0,
        vector_text_limit: int = 8000,
    ) -> None:
        self._records = records
        self._storage = storage
        self._validator = validator
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._cache = cache
        self._extractor = extractor
        self.min_text_length = min_text_length
        self.timeout_seconds = timeout_seconds
        self.vector_text_limit = vector_text_limit
        # advisory, per process
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def is_running(self, document_id: UUID) -> bool:
        lock = self._locks.get(document_id)
        return lock is not None and lock.locked()

    async def ingest(self, document_id: UUID, owner_id: str) -> IngestionResult:
        """Process (or reprocess) one document.

        Raises a ``DocChatError`` describing the failure; by then the document
        is already in ``error`` and ``err.recorded`` is set.
        """
        if self.is_running(document_id):
            raise IngestionInProgress(f"Ingestion of {document_id} is already running")
        lock = self._locks.setdefault(document_id, asyncio.Lock())
        async with lock:
            try:
                with structlog.contextvars.bound_contextvars(document_id=str(document_id), owner_id=owner_id):
                    return await self._ingest(document_id, owner_id)
            finally:
                self._locks.pop(document_id, None)

    async def _ingest(self, document_id: UUID, owner_id: str) -> IngestionResult:
        doc = await self._records.require(document_id, owner_id)

        # Policy check comes before any storage I/O.
        try:
            self._validator.validate(doc.name, doc.size_bytes)
        except DocChatError as e:
            await self._cleanup(doc)
            await self._fail(doc, e)
            raise

        started = time.monotonic()
        try:
            await self._start(doc)
            result = await asyncio.wait_for(self._run(doc, started), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            err = IngestionTimeout(f"Ingestion exceeded {self.timeout_seconds:g}s")
            await self._cleanup(doc)
            await self._fail(doc, err)
            raise err from None
        except DocChatError as e:
            await self._cleanup(doc)
            await self._fail(doc, e)
            raise
        except asyncio.CancelledError:
            await asyncio.shield(self._cleanup(doc))
            raise
        except Exception as e:
            logger.exception("ingestion_unexpected_error")
            err = ProcessingFailed(f"Unexpected {type(e).__name__}: {e}")
            await self._cleanup(doc)
            await self._fail(doc, err)
            raise err from e

        logger.info(
            "ingestion_completed",
            chunk_count=result.chunk_count,
            text_length=result.text_length,
            duration=round(result.duration_seconds, 3),
        )
        return result

    async def _start(self, doc: Document) -> None:
        self._cache.evict(doc.id)
        removed = await self._index.delete_all(doc.id, doc.owner_id)
        await self._records.update_status(
            doc.id,
            doc.owner_id,
            DocumentStatus.PROCESSING,
            chunk_count=0,
            error_message=None,
            processed_at=None,
        )
        logger.info("ingestion_started", name=doc.name, previous_vectors=removed)

    @asynccontextmanager
    async def _downloaded(self, doc: Document) -> AsyncIterator[io.BytesIO]:
        raw = await self._storage.download(doc.storage_path)
        buf = io.BytesIO(raw)
        del raw
        try:
            yield buf
        finally:
            buf.close()

    async def _run(self, doc: Document, started: float) -> IngestionResult:
        async with self._downloaded(doc) as buf:
            text = await self._extractor(doc.name, buf.getvalue())

        if not text or len(text.strip()) < self.min_text_length:
            raise EmptyContent(f"Only {len((text or '').strip())} characters extracted from {doc.name}")

        chunks = list(self._chunker.split(text))
        if not chunks:
            raise EmptyContent(f"No chunks produced for {doc.name}")
        logger.info("document_chunked", chunk_count=len(chunks), text_length=len(text))

        embeddings = await self._embedder.embed(chunks)
        if len(embeddings) != len(chunks):
            raise EmbeddingServiceError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks")

        vectors = [
            VectorRecord(
                id=vector_id(doc.id, i),
                values=values,
                metadata={
                    "documentId": str(doc.id),
                    "ownerId": doc.owner_id,
                    "chunkIndex": i,
                    "text": chunk[:self.vector_text_limit],
                    "fileName": doc.name,
                },
            )
            for i, (chunk, values) in enumerate(zip(chunks, embeddings))
        ]
        written = await self._index.upsert(doc.id, vectors)

        token = self._cache.token()
        updated = await self._records.update_status(
            doc.id,
            doc.owner_id,
            DocumentStatus.PROCESSED,
            chunk_count=written,
            error_message=None,
            processed_at=utcnow(),
            metadata={
                "textLength": len(text),
                "chunksCount": written,
                "embeddingsModel": self._embedder.model,
            },
        )
        self._cache.put(updated, token)
        return IngestionResult(doc.id, written, len(text), time.monotonic() - started)

    async def _cleanup(self, doc: Document) -> None:
        try:
            await self._index.delete_all(doc.id, doc.owner_id)
        except DocChatError:
            logger.exception("vector_cleanup_failed")

    async def _fail(self, doc: Document, err: DocChatError) -> None:
        self._cache.evict(doc.id)
        logger.warning("ingestion_failed", kind=err.kind.value, error=err.message)
        try:
            await self._records.update_status(
                doc.id,
                doc.owner_id,
                DocumentStatus.ERROR,
                chunk_count=0,
                error_message=err.user_message,
                metadata={
                    "errorKind": err.kind.value,
                    "error": err.message,
                    "failedAt": utcnow().isoformat(),
                },
            )
        except Exception:
            logger.exception("error_status_write_failed", kind=err.kind.value)
            return
        err.recorded = True
