"""Unit tests for ChromaVectorStore."""

import pytest

from knowledge.storage.chroma import ChromaVectorStore, _scalar_metadata, sanitize_collection_name

chromadb = pytest.importorskip("chromadb")


class TestSanitizeCollectionName:
    def test_valid_name_unchanged(self):
        assert sanitize_collection_name("knowledge_abc-123") == "knowledge_abc-123"

    def test_invalid_characters_replaced(self):
        assert sanitize_collection_name("knowledge_a.b c") == "knowledge_a_b_c"

    def test_edges_made_alphanumeric(self):
        assert sanitize_collection_name("_x_") == "c_x_0"

    def test_length_bounds(self):
        assert len(sanitize_collection_name("ab")) >= 3
        assert len(sanitize_collection_name("k" * 100)) == 63


def test_scalar_metadata():
    assert _scalar_metadata({}) is None
    assert _scalar_metadata({"a": 1, "b": [1, 2], "c": None}) == {"a": 1, "b": "[1, 2]"}


@pytest.mark.asyncio
class TestChromaVectorStore:
    """Test ChromaVectorStore functionality."""

    @pytest.fixture
    async def store(self, tmp_path):
        store = ChromaVectorStore(persist_directory=str(tmp_path))
        await store.initialize()
        yield store
        await store.close()

    async def test_upsert_and_search(self, store):
        await store.upsert("knowledge_1", "near", [1.0, 0.0, 0.0], {"document_id": "near"})
        await store.upsert("knowledge_1", "far", [0.0, 0.0, 1.0], {"document_id": "far"})

        hits = await store.search("knowledge_1", [1.0, 0.05, 0.0], 10)

        assert [h.id for h in hits] == ["near", "far"]
        assert hits[0].score > hits[1].score
        assert hits[0].metadata["document_id"] == "near"

    async def test_missing_collection_returns_empty(self, store):
        assert await store.search("knowledge_missing", [1.0, 0.0], 5) == []

    async def test_delete(self, store):
        await store.upsert("knowledge_1", "d", [1.0, 0.0], {"document_id": "d"})

        assert await store.delete("knowledge_1", "d") is True
        assert await store.delete("knowledge_1", "d") is False
        assert await store.delete("knowledge_missing", "d") is False

    async def test_delete_collection(self, store):
        await store.upsert("knowledge_1", "d", [1.0, 0.0], {"document_id": "d"})

        await store.delete_collection("knowledge_1")

        assert await store.search("knowledge_1", [1.0, 0.0], 5) == []
        await store.delete_collection("knowledge_1")
