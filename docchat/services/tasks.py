import asyncio
from typing import Optional, Set
from uuid import UUID

import structlog

from ..errors import DocChatError, DocumentNotFound, ErrorKind, ProcessingFailed
from ..models import DocumentStatus, utcnow
from .ingestion import IngestionResult, IngestionService
from .records import RecordStore

logger = structlog.get_logger(logger_name=__name__)

CANCELLED_MESSAGE = "Processing was interrupted. Please retry."


class IngestionDispatcher:
    """Runs ingestion in the background of the request that triggered it.

    Each attempt is wrapped so its outcome is always observed: failures the
    pipeline already wrote to the record are logged, anything else
    (cancellation, unexpected errors before the pipeline could record them)
    sets ``status = error`` here, once.
    """

    def __init__(self, ingestion: IngestionService, records: RecordStore) -> None:
        self._ingestion = ingestion
        self._records = records
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, document_id: UUID, owner_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._run(document_id, owner_id), name=f"ingest-{document_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("ingestion_dispatched", document_id=str(document_id))
        return task

    async def _run(self, document_id: UUID, owner_id: str) -> Optional[IngestionResult]:
        try:
            return await self._ingestion.ingest(document_id, owner_id)
        except DocChatError as e:
            if e.recorded:
                logger.info("background_ingestion_failed", document_id=str(document_id), kind=e.kind.value)
            elif e.kind is ErrorKind.CONFLICT:
                # another attempt owns the document and will record its own outcome
                logger.warning("background_ingestion_skipped", document_id=str(document_id), reason=e.message)
            else:
                await self._record_failure(document_id, owner_id, e)
        except asyncio.CancelledError:
            await asyncio.shield(
                self._record_failure(document_id, owner_id, ProcessingFailed("cancelled", user_message=CANCELLED_MESSAGE))
            )
            raise
        except Exception as e:
            logger.exception("background_ingestion_crashed", document_id=str(document_id))
            await self._record_failure(document_id, owner_id, ProcessingFailed(str(e)))
        return None

    async def _record_failure(self, document_id: UUID, owner_id: str, err: DocChatError) -> None:
        try:
            await self._records.update_status(
                document_id,
                owner_id,
                DocumentStatus.ERROR,
                chunk_count=0,
                error_message=err.user_message,
                metadata={"errorKind": err.kind.value, "error": err.message, "failedAt": utcnow().isoformat()},
            )
            err.recorded = True
        except DocumentNotFound:
            logger.info("failed_document_gone", document_id=str(document_id))
        except Exception:
            logger.exception("error_status_write_failed", document_id=str(document_id))

    async def drain(self) -> None:
        """Wait for every dispatched ingestion to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
