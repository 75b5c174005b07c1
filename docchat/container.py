"""Builds the long-lived components once and wires them together."""

from dataclasses import dataclass

import httpx
import structlog
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .db import make_engine, make_session_factory
from .services.cache import DocumentCache
from .services.documents import DocumentService
from .services.embedding import EmbeddingGateway
from .services.ingestion import IngestionService
from .services.llm import TextGenerator
from .services.rag import ChatEngine
from .services.records import RecordStore
from .services.storage import LocalStorage
from .services.tasks import IngestionDispatcher
from .services.validation import FileValidator
from .services.vector_index import SqlVectorIndex
from .utils.text import TextChunker

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class Services:
    engine: AsyncEngine
    http_client: httpx.AsyncClient
    openai_client: AsyncOpenAI
    records: RecordStore
    storage: LocalStorage
    index: SqlVectorIndex
    cache: DocumentCache
    ingestion: IngestionService
    dispatcher: IngestionDispatcher
    documents: DocumentService
    chat: ChatEngine

    async def aclose(self) -> None:
        await self.dispatcher.drain()
        await self.http_client.aclose()
        await self.openai_client.close()
        await self.engine.dispose()


def build_services(
    settings: Settings,
    *,
    engine: AsyncEngine | None = None,
    openai_client: AsyncOpenAI | None = None,
    embedder: EmbeddingGateway | None = None,
    generator: TextGenerator | None = None,
    storage: LocalStorage | None = None,
) -> Services:
    engine = engine or make_engine(settings.database_url)
    sessions = make_session_factory(engine)
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(60.0))
    # the SDK refuses to build without a key; calls made with the placeholder fail as upstream errors
    openai_client = openai_client or AsyncOpenAI(api_key=settings.OPENAI_API_KEY or "unset")

    records = RecordStore(sessions)
    storage = storage or LocalStorage(settings.STORAGE_DIR, settings.PUBLIC_BASE_URL)
    index = SqlVectorIndex(sessions, batch_size=settings.UPSERT_BATCH_SIZE)
    cache = DocumentCache(settings.DOCUMENT_CACHE_SIZE)
    validator = FileValidator(settings.MAX_FILE_SIZE, settings.allowed_extensions)
    embedder = embedder or EmbeddingGateway(
        openai_client,
        model=settings.OPENAI_EMBED_MODEL,
        batch_size=settings.EMBED_BATCH_SIZE,
        pace_every=settings.EMBED_PACE_EVERY,
        pace_seconds=settings.EMBED_PACE_SECONDS,
        dimensions=settings.EMBED_DIM,
    )
    generator = generator or TextGenerator(
        settings.LLM_PROVIDER,
        openai_client=openai_client,
        openai_model=settings.OPENAI_MODEL,
        http_client=http_client,
        perplexity_api_key=settings.PERPLEXITY_API_KEY,
        perplexity_model=settings.PERPLEXITY_MODEL,
        temperature=settings.LLM_TEMPERATURE,
    )

    ingestion = IngestionService(
        records,
        storage,
        validator,
        TextChunker(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP),
        embedder,
        index,
        cache,
        min_text_length=settings.MIN_TEXT_LENGTH,
        timeout_seconds=settings.INGEST_TIMEOUT_SECONDS,
        vector_text_limit=settings.VECTOR_TEXT_LIMIT,
    )
    dispatcher = IngestionDispatcher(ingestion, records)
    documents = DocumentService(records, storage, validator, index, dispatcher, cache)
    chat = ChatEngine(
        records,
        embedder,
        index,
        generator,
        cache,
        top_k=settings.RETRIEVAL_TOP_K,
        history_limit=settings.HISTORY_LIMIT,
    )
    logger.info(
        "services_built",
        llm_provider=settings.LLM_PROVIDER,
        llm_model=getattr(generator, "model_name", None),
        embed_model=settings.OPENAI_EMBED_MODEL,
    )
    return Services(
        engine=engine,
        http_client=http_client,
        openai_client=openai_client,
        records=records,
        storage=storage,
        index=index,
        cache=cache,
        ingestion=ingestion,
        dispatcher=dispatcher,
        documents=documents,
        chat=chat,
    )
