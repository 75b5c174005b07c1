from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import structlog

from ..errors import DocChatError, DocumentNotReady, GenerationFailed
from ..models import ChatTurn, Document, DocumentStatus
from .cache import DocumentCache
from .embedding import EmbeddingGateway
from .llm import TextGenerator
from .records import RecordStore
from .vector_index import VectorIndex, VectorMatch

logger = structlog.get_logger(logger_name=__name__)

SYSTEM_TEMPLATE = """You are a helpful AI assistant that analyzes documents. Use the following document context to answer the user's question accurately and helpfully.

DOCUMENT CONTEXT:
{context}

DOCUMENT METADATA:
- Title: {title}
- Status: {status}
- Chunks: {chunk_count}
- Processed: {processed}

CONVERSATION HISTORY:
{history}

INSTRUCTIONS:
- Answer based on the document context when possible
- If the context doesn't contain relevant information, say so clearly
- Be concise but informative
- Maintain conversation context from previous messages
- Provide specific references to the document content when possible
"""

FALLBACK_TEMPLATE = """You are a helpful AI assistant. The user is asking about the document "{title}", but its content is not available right now.
Answer from general knowledge if you can, and say clearly that the answer is not based on the document itself.
"""

NO_CONTEXT = "No relevant passages were found in the document."
NO_HISTORY = "No previous conversation."


@dataclass
class ChatAnswer:
    response: str
    chunks_used: int
    is_fallback: bool = False
    model: str = "unknown"


def format_history(history: Sequence[Any]) -> str:
    """Compact transcript of prior turns.

    Accepts stored ``ChatTurn`` rows or ``{"role", "content"}`` messages.
    """
    lines: List[str] = []
    for item in history:
        if isinstance(item, ChatTurn):
            lines.append(f"User: {item.user_message}\nAssistant: {item.assistant_response}")
            continue
        role = str(item.get("role", "user")).lower()
        label = "Assistant" if role == "assistant" else "User"
        lines.append(f"{label}: {item.get('content', '')}")
    return "\n\n".join(lines) if lines else NO_HISTORY


def build_context(matches: Sequence[VectorMatch]) -> str:
    texts = [m.text.strip() for m in matches if m.text and m.text.strip()]
    return "\n\n".join(texts) if texts else NO_CONTEXT


def build_system_prompt(doc: Document, context: str, history: str) -> str:
    processed = doc.processed_at.date().isoformat() if doc.processed_at else "unknown"
    return SYSTEM_TEMPLATE.format(
        context=context,
        title=doc.name,
        status=doc.status,
        chunk_count=doc.chunk_count or 0,
        processed=processed,
        history=history,
    )


class ChatEngine:
    """Retrieval-augmented answering over one processed document."""

    def __init__(
        self,
        records: RecordStore,
        embedder: EmbeddingGateway,
        index: VectorIndex,
        generator: TextGenerator,
        cache: DocumentCache,
        top_k: int = 4,
        history_limit: int = 6,
    ) -> None:
        self._records = records
        self._embedder = embedder
        self._index = index
        self._generator = generator
        self._cache = cache
        self.top_k = top_k
        self.history_limit = history_limit

    async def _ready_document(self, document_id: UUID, owner_id: str) -> Document:
        doc = self._cache.get(document_id, owner_id)
        if doc is None:
            token = self._cache.token()
            doc = await self._records.require(document_id, owner_id)
            self._cache.put(doc, token)
        if doc.status != DocumentStatus.PROCESSED.value:
            raise DocumentNotReady(f"Document {document_id} is still {doc.status}")
        return doc

    async def answer(
        self,
        document_id: UUID,
        owner_id: str,
        question: str,
        prior_history: Optional[Sequence[Dict[str, str]]] = None,
    ) -> ChatAnswer:
        doc = await self._ready_document(document_id, owner_id)
        log = logger.bind(document_id=str(document_id), owner_id=owner_id)

        query_vector = await self._embedder.embed_query(question)
        matches = await self._index.query(document_id, owner_id, query_vector, self.top_k)

        if prior_history is None:
            prior_history = await self._records.list_turns(document_id, owner_id, limit=self.history_limit, latest=True)
        system = build_system_prompt(doc, build_context(matches), format_history(prior_history))

        is_fallback = False
        chunks_used = len(matches)
        try:
            text, model = await self._generator.generate(system, question)
        except DocChatError as e:
            log.warning("generation_failed", error=str(e), fallback=True)
            try:
                text, model = await self._generator.generate(FALLBACK_TEMPLATE.format(title=doc.name), question)
            except DocChatError as e2:
                log.error("fallback_generation_failed", error=str(e2))
                raise GenerationFailed(f"Primary and fallback generation failed: {e2}") from e2
            is_fallback = True
            chunks_used = 0

        answer = ChatAnswer(response=text.strip(), chunks_used=chunks_used, is_fallback=is_fallback, model=model or "unknown")
        await self._persist(doc, owner_id, question, answer)
        log.info("chat_answered", chunks_used=answer.chunks_used, is_fallback=is_fallback, model=answer.model)
        return answer

    async def _persist(self, doc: Document, owner_id: str, question: str, answer: ChatAnswer) -> None:
        # The answer is already computed; a failed write must not lose it.
        try:
            await self._records.add_turn(
                doc.id,
                owner_id,
                question,
                answer.response,
                metadata={
                    "chunks_used": answer.chunks_used,
                    "model": answer.model,
                    "is_fallback": answer.is_fallback,
                    "response_length": len(answer.response),
                },
            )
        except Exception:
            logger.exception("chat_turn_persist_failed", document_id=str(doc.id))

    async def history(self, document_id: UUID, owner_id: str, limit: int = 50) -> List[ChatTurn]:
        await self._records.require(document_id, owner_id)
        return await self._records.list_turns(document_id, owner_id, limit=limit)

    async def clear_history(self, document_id: UUID, owner_id: str) -> int:
        await self._records.require(document_id, owner_id)
        return await self._records.delete_turns(document_id, owner_id)
