from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence
from uuid import UUID

import numpy as np
import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import VectorStoreError
from ..models import VectorEntry

logger = structlog.get_logger(logger_name=__name__)


def vector_id(document_id: UUID | str, chunk_index: int) -> str:
    return f"{document_id}-chunk-{chunk_index}"


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    text: str
    score: float
    chunk_index: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorIndex(ABC):

    @abstractmethod
    async def upsert(self, document_id: UUID, vectors: Sequence[VectorRecord]) -> int:
        """Insert or replace vectors by id. Returns how many were written."""

    @abstractmethod
    async def query(self, document_id: UUID, owner_id: str, query_vector: Sequence[float], top_k: int = 4) -> List[VectorMatch]:
        """At most ``top_k`` matches for one document and owner, best first."""

    @abstractmethod
    async def delete_all(self, document_id: UUID, owner_id: str) -> int:
        """Remove every vector of the document. Returns how many were removed."""

    @abstractmethod
    async def count(self, document_id: UUID) -> int:
        ...


def _to_vec(raw) -> np.ndarray:
    if raw is None:
        raw = []
    return np.asarray([float(x) for x in raw], dtype=np.float32).reshape(-1)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    return (matrix @ query) / (norms + 1e-8)


class SqlVectorIndex(VectorIndex):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], batch_size: int = 100) -> None:
        self._sessions = session_factory
        self.batch_size = batch_size

    async def upsert(self, document_id: UUID, vectors: Sequence[VectorRecord]) -> int:
        vectors = list(vectors)
        failed: List[int] = []
        written = 0
        for batch_no, start in enumerate(range(0, len(vectors), self.batch_size)):
            batch = vectors[start:start + self.batch_size]
            try:
                async with self._sessions() as session:
                    for rec in batch:
                        meta = dict(rec.metadata)
                        await session.merge(VectorEntry(
                            id=rec.id,
                            document_id=document_id,
                            owner_id=str(meta.get("ownerId", "")),
                            chunk_index=int(meta.get("chunkIndex", 0)),
                            text=str(meta.get("text", "")),
                            values=[float(v) for v in rec.values],
                            meta=meta,
                        ))
                    await session.commit()
                written += len(batch)
                logger.debug("vector_batch_upserted", document_id=str(document_id), batch=batch_no, size=len(batch))
            except SQLAlchemyError as e:
                logger.warning("vector_batch_failed", document_id=str(document_id), batch=batch_no, error=str(e))
                failed.append(batch_no)
        if failed:
            raise VectorStoreError(
                f"Upsert failed for batches {failed} of document {document_id}",
                failed_batches=failed,
            )
        return written

    async def query(self, document_id: UUID, owner_id: str, query_vector: Sequence[float], top_k: int = 4) -> List[VectorMatch]:
        if top_k <= 0:
            return []
        try:
            async with self._sessions() as session:
                res = await session.execute(
                    select(VectorEntry).where(
                        VectorEntry.document_id == document_id,
                        VectorEntry.owner_id == owner_id,
                    )
                )
                rows: List[VectorEntry] = list(res.scalars().all())
        except SQLAlchemyError as e:
            raise VectorStoreError(f"Vector query failed for document {document_id}: {e}") from e
        if not rows:
            return []

        q = _to_vec(query_vector)
        matrix = np.vstack([_to_vec(r.values) for r in rows])
        if matrix.shape[1] != q.size:
            raise VectorStoreError(
                f"Query vector has {q.size} dimensions, index has {matrix.shape[1]}"
            )
        scores = cosine_scores(q, matrix)
        # stable sort keeps chunk order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(
                id=rows[i].id,
                text=rows[i].text,
                score=float(scores[i]),
                chunk_index=rows[i].chunk_index,
                metadata=dict(rows[i].meta or {}),
            )
            for i in order
        ]

    async def delete_all(self, document_id: UUID, owner_id: str) -> int:
        try:
            async with self._sessions() as session:
                res = await session.execute(
                    delete(VectorEntry).where(
                        VectorEntry.document_id == document_id,
                        VectorEntry.owner_id == owner_id,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise VectorStoreError(f"Vector delete failed for document {document_id}: {e}") from e
        return res.rowcount or 0

    async def count(self, document_id: UUID) -> int:
        try:
            async with self._sessions() as session:
                res = await session.execute(
                    select(func.count()).select_from(VectorEntry).where(VectorEntry.document_id == document_id)
                )
                return int(res.scalar_one())
        except SQLAlchemyError as e:
            raise VectorStoreError(f"Vector count failed for document {document_id}: {e}") from e
