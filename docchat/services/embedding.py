import asyncio
from typing import List, Sequence
from openai import AsyncOpenAI, OpenAIError
import structlog

from ..errors import EmbeddingServiceError

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingGateway:
    """Turns texts into vectors, one per input, in input order.

    Requests are sent in batches of ``batch_size``; after every ``pace_every``
    embedded items the gateway sleeps ``pace_seconds`` to stay under the
    provider's rate limit.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "text-embedding-3-small",
        batch_size: int = 100,
        pace_every: int = 100,
        pace_seconds: float = 0.1,
        dimensions: int | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._client = client
        self.model = model
        self.batch_size = batch_size
        self.pace_every = pace_every
        self.pace_seconds = pace_seconds
        self.dimensions = dimensions

    async def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        try:
            resp = await self._client.embeddings.create(model=self.model, input=batch)
        except OpenAIError as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e
        # The API may return items out of order; "index" is authoritative.
        data = sorted(resp.data, key=lambda d: d.index)
        if len(data) != len(batch):
            raise EmbeddingServiceError(
                f"Embedding service returned {len(data)} vectors for {len(batch)} inputs"
            )
        vectors = [list(d.embedding) for d in data]
        if self.dimensions and any(len(v) != self.dimensions for v in vectors):
            raise EmbeddingServiceError(f"Embedding dimension mismatch, expected {self.dimensions}")
        return vectors

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        vectors: List[List[float]] = []
        since_pause = 0
        for batch_no, start in enumerate(range(0, len(texts), self.batch_size), start=1):
            batch = texts[start:start + self.batch_size]
            vectors.extend(await self._embed_batch(batch))
            logger.debug("embedding_batch", batch=batch_no, size=len(batch), model=self.model)
            since_pause += len(batch)
            more = start + self.batch_size < len(texts)
            if more and self.pace_every and since_pause >= self.pace_every:
                since_pause = 0
                await asyncio.sleep(self.pace_seconds)
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]
