"""Shared fixtures: SQLite-backed stores, local storage and an in-process OpenAI stand-in."""

from __future__ import annotations

import re
import zlib
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from uuid import UUID

import httpx
import openai
import pytest

from docchat.config import Settings
from docchat.container import Services, build_services
from docchat.db import init_models, make_engine, make_session_factory
from docchat.models import Document
from docchat.services.cache import DocumentCache
from docchat.services.records import RecordStore
from docchat.services.storage import LocalStorage, object_path
from docchat.services.validation import detect_format
from docchat.services.vector_index import SqlVectorIndex

FAKE_DIM = 32
OWNER = "user-1"
OTHER_OWNER = "user-2"

_WORD = re.compile(r"\w+")


def embed_words(text: str, dim: int = FAKE_DIM) -> list[float]:
    """Deterministic bag-of-words vector; texts sharing words score higher."""
    vec = [0.0] * dim
    for word in _WORD.findall(text.lower()):
        vec[zlib.crc32(word.encode()) % dim] += 1.0
    if not any(vec):
        vec[0] = 1.0
    return vec


def connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.test/v1"))


class FakeOpenAI:
    """Implements the slice of ``AsyncOpenAI`` the services call."""

    def __init__(self, dim: int = FAKE_DIM, reply: str = "The document says hello.") -> None:
        self.dim = dim
        self.reply = reply
        self.embedding_calls: list[list[str]] = []
        self.chat_calls: list[list[dict[str, str]]] = []
        self.fail_embedding_calls: set[int] = set()
        self.chat_failures = 0
        self.empty_chat_replies = 0
        self.embeddings = SimpleNamespace(create=self._embed)
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))

    async def _embed(self, model: str, input: list[str]) -> Any:
        self.embedding_calls.append(list(input))
        if len(self.embedding_calls) in self.fail_embedding_calls:
            raise connection_error()
        return SimpleNamespace(
            data=[SimpleNamespace(index=i, embedding=embed_words(t, self.dim)) for i, t in enumerate(input)]
        )

    async def _chat(self, model: str, messages: list[dict[str, str]], temperature: float) -> Any:
        self.chat_calls.append(messages)
        if self.chat_failures > 0:
            self.chat_failures -= 1
            raise connection_error()
        if self.empty_chat_replies > 0:
            self.empty_chat_replies -= 1
            return SimpleNamespace(model=model, choices=[])
        return SimpleNamespace(
            model=model,
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))],
        )

    async def close(self) -> None:
        return None


class SpyStorage(LocalStorage):
    """LocalStorage that records which paths were downloaded."""

    def __init__(self, root: str) -> None:
        super().__init__(root, "http://files.test")
        self.downloads: list[str] = []

    async def download(self, path: str) -> bytes:
        self.downloads.append(path)
        return await super().download(path)


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'docchat.db'}",
        "STORAGE_DIR": str(tmp_path / "storage"),
        "OPENAI_API_KEY": "test-key",
        "LLM_PROVIDER": "openai",
        "EMBED_DIM": FAKE_DIM,
        "EMBED_PACE_SECONDS": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def storage(tmp_path: Path) -> SpyStorage:
    return SpyStorage(str(tmp_path / "storage"))


@pytest.fixture
async def engine(settings: Settings):
    eng = make_engine(settings.database_url)
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessions(engine):
    return make_session_factory(engine)


@pytest.fixture
def records(sessions) -> RecordStore:
    return RecordStore(sessions)


@pytest.fixture
def index(sessions) -> SqlVectorIndex:
    return SqlVectorIndex(sessions, batch_size=2)


@pytest.fixture
def cache() -> DocumentCache:
    return DocumentCache(16)


@pytest.fixture
async def services(settings: Settings, engine, fake_openai: FakeOpenAI, storage: SpyStorage):
    svc = build_services(settings, engine=engine, openai_client=fake_openai, storage=storage)
    yield svc
    await svc.dispatcher.drain()
    await svc.http_client.aclose()


async def seed_document(
    records: RecordStore,
    storage: LocalStorage,
    name: str,
    data: bytes,
    owner_id: str = OWNER,
) -> Document:
    """Store a file and create its ``uploading`` record without starting ingestion."""
    path = object_path(owner_id, name)
    await storage.upload(path, data)
    return await records.create(owner_id, name, path, len(data), detect_format(name).value)


async def reload(records: RecordStore, document_id: UUID, owner_id: str = OWNER) -> Document:
    return await records.require(document_id, owner_id)


@pytest.fixture
def sample_text() -> str:
    paragraphs = [
        "Quarterly revenue grew by twelve percent compared to the previous year. "
        "The growth was driven mainly by the subscription business in Europe.",
        "Operating costs stayed flat. Hiring was paused in the second half of the year "
        "while the company renegotiated its cloud contracts.",
        "The board approved a dividend of two euros per share. Payment is scheduled for June.",
    ]
    return "\n\n".join(paragraphs * 6)
