from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import DocumentNotFound
from ..models import ChatTurn, Document, DocumentStatus, utcnow

logger = structlog.get_logger(logger_name=__name__)

_UNSET: Any = object()

SEARCH_SCAN_LIMIT = 1000


@dataclass
class SearchPage:
    results: List[Document]
    total: int
    has_more: bool


def metadata_matches(meta: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Every non-null filter must match: strings by case-insensitive substring,
    lists when each filter item is a substring of some stored item, anything
    else by equality. A field missing from ``meta`` never matches.
    """
    for key, wanted in filters.items():
        if wanted is None:
            continue
        have = meta.get(key)
        if have is None:
            return False
        if isinstance(wanted, str) and isinstance(have, str):
            if wanted.lower() not in have.lower():
                return False
        elif isinstance(wanted, list) and isinstance(have, list):
            if not contains_all(have, wanted):
                return False
        elif have != wanted:
            return False
    return True


def contains_all(have: List[Any], wanted: List[str]) -> bool:
    stored = [h.lower() for h in have if isinstance(h, str)]
    return all(any(w.lower() in s for s in stored) for w in wanted)


class RecordStore:
    """Document and chat-turn persistence. Every read and write is scoped by owner."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    # Documents

    async def create(
        self,
        owner_id: str,
        name: str,
        storage_path: str,
        size_bytes: int,
        format: str,
        metadata: Optional[Dict[str, Any]] = None,
        status: DocumentStatus = DocumentStatus.UPLOADING,
    ) -> Document:
        doc = Document(
            owner_id=owner_id,
            name=name,
            storage_path=storage_path,
            size_bytes=size_bytes,
            format=format,
            status=status.value,
            chunk_count=0,
            meta=dict(metadata or {}),
        )
        async with self._sessions() as session:
            session.add(doc)
            await session.commit()
        logger.info("document_created", document_id=str(doc.id), owner_id=owner_id, name=name)
        return doc

    async def get(self, document_id: UUID, owner_id: str) -> Optional[Document]:
        async with self._sessions() as session:
            res = await session.execute(
                select(Document).where(Document.id == document_id, Document.owner_id == owner_id)
            )
            return res.scalar_one_or_none()

    async def require(self, document_id: UUID, owner_id: str) -> Document:
        doc = await self.get(document_id, owner_id)
        if doc is None:
            raise DocumentNotFound(f"Document {document_id} not found for owner {owner_id}")
        return doc

    async def list_by_owner(self, owner_id: str) -> List[Document]:
        async with self._sessions() as session:
            res = await session.execute(
                select(Document).where(Document.owner_id == owner_id).order_by(Document.created_at.desc())
            )
            return list(res.scalars().all())

    async def search(
        self,
        owner_id: str,
        *,
        name_query: Optional[str] = None,
        file_type: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        where: Optional[Callable[[Document], bool]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> SearchPage:
        """Newest-first page of the owner's documents passing every given filter.

        Column filters run in SQL; ``where`` is applied in Python to at most
        ``SEARCH_SCAN_LIMIT`` candidates, which also bounds ``total``.
        """
        stmt = select(Document).where(Document.owner_id == owner_id)
        if name_query:
            stmt = stmt.where(Document.name.icontains(name_query, autoescape=True))
        if file_type:
            stmt = stmt.where(Document.format == file_type.lower().lstrip("."))
        if min_size is not None:
            stmt = stmt.where(Document.size_bytes >= min_size)
        if max_size is not None:
            stmt = stmt.where(Document.size_bytes <= max_size)
        if created_from is not None:
            stmt = stmt.where(Document.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(Document.created_at <= created_to)
        stmt = stmt.order_by(Document.created_at.desc()).limit(SEARCH_SCAN_LIMIT)

        async with self._sessions() as session:
            res = await session.execute(stmt)
            docs = list(res.scalars().all())
        if where is not None:
            docs = [d for d in docs if where(d)]
        return SearchPage(
            results=docs[offset : offset + limit],
            total=len(docs),
            has_more=len(docs) > offset + limit,
        )

    async def update_metadata(self, document_id: UUID, owner_id: str, fields: Dict[str, Any]) -> Document:
        """Merge ``fields`` into the stored metadata; a ``None`` value removes the key."""
        async with self._sessions() as session:
            res = await session.execute(
                select(Document)
                .where(Document.id == document_id, Document.owner_id == owner_id)
                .with_for_update()
            )
            doc = res.scalar_one_or_none()
            if doc is None:
                raise DocumentNotFound(f"Document {document_id} not found for owner {owner_id}")
            meta = dict(doc.meta or {})
            for key, value in fields.items():
                if value is None:
                    meta.pop(key, None)
                else:
                    meta[key] = value
            doc.meta = meta
            doc.updated_at = utcnow()
            await session.commit()
        return doc

    async def update_status(
        self,
        document_id: UUID,
        owner_id: str,
        status: DocumentStatus,
        *,
        chunk_count: Optional[int] = None,
        error_message: Optional[str] = _UNSET,
        processed_at: Optional[datetime] = _UNSET,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Document:
        """Set the status and any extra fields in one row-locked transaction.

        ``metadata`` is merged into the stored metadata rather than replacing it.
        """
        async with self._sessions() as session:
            res = await session.execute(
                select(Document)
                .where(Document.id == document_id, Document.owner_id == owner_id)
                .with_for_update()
            )
            doc = res.scalar_one_or_none()
            if doc is None:
                raise DocumentNotFound(f"Document {document_id} not found for owner {owner_id}")
            doc.status = status.value
            if chunk_count is not None:
                doc.chunk_count = chunk_count
            if error_message is not _UNSET:
                doc.error_message = error_message
            if processed_at is not _UNSET:
                doc.processed_at = processed_at
            if metadata:
                doc.meta = {**(doc.meta or {}), **metadata}
            doc.updated_at = utcnow()
            await session.commit()
        logger.info("document_status", document_id=str(document_id), status=status.value)
        return doc

    async def delete(self, document_id: UUID, owner_id: str) -> bool:
        async with self._sessions() as session:
            res = await session.execute(
                delete(Document).where(Document.id == document_id, Document.owner_id == owner_id)
            )
            await session.commit()
        return bool(res.rowcount)

    # Chat turns

    async def add_turn(
        self,
        document_id: UUID,
        owner_id: str,
        user_message: str,
        assistant_response: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatTurn:
        turn = ChatTurn(
            document_id=document_id,
            owner_id=owner_id,
            user_message=user_message,
            assistant_response=assistant_response,
            meta=dict(metadata or {}),
        )
        async with self._sessions() as session:
            session.add(turn)
            await session.commit()
        return turn

    async def list_turns(self, document_id: UUID, owner_id: str, limit: int = 50, latest: bool = False) -> List[ChatTurn]:
        """Turns in creation order; with ``latest`` the window is the most recent ``limit``."""
        order = ChatTurn.created_at.desc() if latest else ChatTurn.created_at.asc()
        async with self._sessions() as session:
            res = await session.execute(
                select(ChatTurn)
                .where(ChatTurn.document_id == document_id, ChatTurn.owner_id == owner_id)
                .order_by(order)
                .limit(limit)
            )
            turns = list(res.scalars().all())
        if latest:
            turns.reverse()
        return turns

    async def delete_turns(self, document_id: UUID, owner_id: str) -> int:
        async with self._sessions() as session:
            res = await session.execute(
                delete(ChatTurn).where(ChatTurn.document_id == document_id, ChatTurn.owner_id == owner_id)
            )
            await session.commit()
        return res.rowcount or 0
