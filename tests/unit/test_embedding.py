from types import SimpleNamespace

import pytest

from conftest import FAKE_DIM, FakeOpenAI, connection_error
from docchat.errors import EmbeddingServiceError
from docchat.services import embedding as embedding_module
from docchat.services.embedding import EmbeddingGateway


class ShuffledClient:
    """Returns embedding items in reverse order, as the API is allowed to."""

    def __init__(self, drop_last: bool = False, dim: int = 3) -> None:
        self.drop_last = drop_last
        self.dim = dim
        self.embeddings = SimpleNamespace(create=self._create)

    async def _create(self, model, input):
        items = [SimpleNamespace(index=i, embedding=[float(i)] * self.dim) for i in range(len(input))]
        if self.drop_last:
            items = items[:-1]
        return SimpleNamespace(data=list(reversed(items)))


@pytest.fixture
def sleeps(monkeypatch):
    calls = []

    async def fake_sleep(seconds):
        calls.append(seconds)

    monkeypatch.setattr(embedding_module.asyncio, "sleep", fake_sleep)
    return calls


async def test_one_vector_per_text_in_order():
    gateway = EmbeddingGateway(ShuffledClient(), batch_size=10)
    vectors = await gateway.embed(["a", "b", "c", "d"])
    assert vectors == [[0.0] * 3, [1.0] * 3, [2.0] * 3, [3.0] * 3]


async def test_texts_are_sent_in_batches(sleeps):
    client = FakeOpenAI()
    gateway = EmbeddingGateway(client, batch_size=3, pace_every=0)
    texts = [f"chunk {i}" for i in range(7)]
    vectors = await gateway.embed(texts)
    assert [len(c) for c in client.embedding_calls] == [3, 3, 1]
    assert len(vectors) == 7
    assert all(len(v) == FAKE_DIM for v in vectors)
    assert sleeps == []


async def test_pauses_between_paced_batches(sleeps):
    gateway = EmbeddingGateway(FakeOpenAI(), batch_size=2, pace_every=4, pace_seconds=0.25)
    await gateway.embed([f"t{i}" for i in range(10)])
    # after items 4 and 8; never after the final batch
    assert sleeps == [0.25, 0.25]


async def test_no_pause_after_last_batch(sleeps):
    gateway = EmbeddingGateway(FakeOpenAI(), batch_size=2, pace_every=2, pace_seconds=0.1)
    await gateway.embed(["a", "b"])
    assert sleeps == []


async def test_empty_input_makes_no_request():
    client = FakeOpenAI()
    assert await EmbeddingGateway(client).embed([]) == []
    assert client.embedding_calls == []


async def test_provider_error_becomes_embedding_service_error():
    client = FakeOpenAI()
    client.fail_embedding_calls = {2}
    gateway = EmbeddingGateway(client, batch_size=1, pace_every=0)
    with pytest.raises(EmbeddingServiceError) as exc:
        await gateway.embed(["one", "two", "three"])
    assert isinstance(exc.value.__cause__, type(connection_error()))
    assert len(client.embedding_calls) == 2


async def test_short_response_is_an_error():
    with pytest.raises(EmbeddingServiceError):
        await EmbeddingGateway(ShuffledClient(drop_last=True)).embed(["a", "b"])


async def test_dimension_mismatch_is_an_error():
    gateway = EmbeddingGateway(ShuffledClient(dim=3), dimensions=FAKE_DIM)
    with pytest.raises(EmbeddingServiceError):
        await gateway.embed(["a"])


async def test_embed_query_returns_single_vector():
    vector = await EmbeddingGateway(FakeOpenAI()).embed_query("what is the fee?")
    assert len(vector) == FAKE_DIM


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        EmbeddingGateway(FakeOpenAI(), batch_size=0)
