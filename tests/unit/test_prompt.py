from datetime import datetime, timezone
from uuid import uuid4

from docchat.models import ChatTurn, Document, DocumentStatus
from docchat.services.cache import DocumentCache
from docchat.services.rag import (
    FALLBACK_TEMPLATE,
    NO_CONTEXT,
    NO_HISTORY,
    build_context,
    build_system_prompt,
    format_history,
)
from docchat.services.vector_index import VectorMatch


def _doc(status: DocumentStatus = DocumentStatus.PROCESSED, owner_id: str = "user-1") -> Document:
    return Document(
        id=uuid4(),
        owner_id=owner_id,
        name="lease.pdf",
        storage_path="user-1/documents/1_lease.pdf",
        size_bytes=1200,
        format="pdf",
        status=status.value,
        chunk_count=3,
        processed_at=datetime(2024, 5, 2, 10, 30, tzinfo=timezone.utc),
        meta={},
    )


def _match(i: int, text: str) -> VectorMatch:
    return VectorMatch(id=f"doc-chunk-{i}", text=text, score=1.0 - i / 10, chunk_index=i)


class TestHistory:

    def test_empty_history(self):
        assert format_history([]) == NO_HISTORY

    def test_stored_turns(self):
        turns = [
            ChatTurn(user_message="Who is the tenant?", assistant_response="ACME GmbH."),
            ChatTurn(user_message="And the rent?", assistant_response="900 EUR."),
        ]
        assert format_history(turns) == (
            "User: Who is the tenant?\nAssistant: ACME GmbH.\n\n"
            "User: And the rent?\nAssistant: 900 EUR."
        )

    def test_client_messages(self):
        history = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "USER", "content": "bye"},
        ]
        assert format_history(history) == "User: hi\n\nAssistant: hello\n\nUser: bye"


class TestContext:

    def test_joins_passages_in_rank_order(self):
        ctx = build_context([_match(0, " first passage "), _match(1, "second passage")])
        assert ctx == "first passage\n\nsecond passage"

    def test_blank_passages_are_skipped(self):
        assert build_context([_match(0, "  "), _match(1, "")]) == NO_CONTEXT
        assert build_context([]) == NO_CONTEXT


class TestSystemPrompt:

    def test_sections_are_filled(self):
        prompt = build_system_prompt(_doc(), "the rent is 900 EUR", "User: hi")
        assert "DOCUMENT CONTEXT:\nthe rent is 900 EUR" in prompt
        assert "- Title: lease.pdf" in prompt
        assert "- Status: processed" in prompt
        assert "- Chunks: 3" in prompt
        assert "- Processed: 2024-05-02" in prompt
        assert "CONVERSATION HISTORY:\nUser: hi" in prompt
        assert "INSTRUCTIONS:" in prompt

    def test_unknown_processing_date(self):
        doc = _doc()
        doc.processed_at = None
        assert "- Processed: unknown" in build_system_prompt(doc, NO_CONTEXT, NO_HISTORY)

    def test_fallback_names_the_document(self):
        assert '"lease.pdf"' in FALLBACK_TEMPLATE.format(title="lease.pdf")


class TestDocumentCache:

    def test_only_processed_documents_are_cached(self):
        cache = DocumentCache(4)
        ready, busy = _doc(), _doc(DocumentStatus.PROCESSING)
        cache.put(ready, cache.token())
        cache.put(busy, cache.token())
        assert cache.get(ready.id, "user-1") is ready
        assert cache.get(busy.id, "user-1") is None
        assert len(cache) == 1

    def test_put_of_non_processed_state_evicts(self):
        cache = DocumentCache(4)
        doc = _doc()
        cache.put(doc, cache.token())
        doc.status = DocumentStatus.ERROR.value
        cache.put(doc, cache.token())
        assert cache.get(doc.id, "user-1") is None

    def test_lookup_is_owner_scoped(self):
        cache = DocumentCache(4)
        doc = _doc()
        cache.put(doc, cache.token())
        assert cache.get(doc.id, "user-2") is None

    def test_least_recently_used_entry_is_dropped(self):
        cache = DocumentCache(2)
        a, b, c = _doc(), _doc(), _doc()
        cache.put(a, cache.token())
        cache.put(b, cache.token())
        cache.get(a.id, "user-1")
        cache.put(c, cache.token())
        assert cache.get(b.id, "user-1") is None
        assert cache.get(a.id, "user-1") is a
        assert cache.get(c.id, "user-1") is c

    def test_snapshot_loaded_before_an_eviction_is_not_cached(self):
        cache = DocumentCache(4)
        doc = _doc()
        token = cache.token()
        cache.evict(doc.id)
        assert cache.put(doc, token) is False
        assert cache.get(doc.id, "user-1") is None
        assert cache.put(doc, cache.token()) is True

    def test_zero_size_disables_caching(self):
        cache = DocumentCache(0)
        doc = _doc()
        assert cache.put(doc, cache.token()) is False
        assert cache.get(doc.id, "user-1") is None
        assert len(cache) == 0
