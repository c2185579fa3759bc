"""Unit tests for KnowledgeStore."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from knowledge.config.schema import RetrievalConfig
from knowledge.entities import DocumentInput, DocumentNotFoundError, KnowledgeError, RetrievalSource
from knowledge.pipelines.indexing import BackendNotConfiguredError, Indexer, IndexingError
from knowledge.pipelines.retrieval import RetrievalError
from knowledge.providers import HashEmbeddingProvider
from knowledge.providers.base import ProviderConfig
from knowledge.service import KnowledgeNotFoundError, KnowledgeStore, PersistenceError
from knowledge.storage.memory import (
    InMemoryGraphStore,
    InMemoryKnowledgeRepository,
    InMemoryVectorStore,
)


def _store(vector=True, graph=True, embedder=True, repository=None, retrieval=None) -> KnowledgeStore:
    indexer = Indexer(
        vector_store=InMemoryVectorStore() if vector else None,
        graph_store=InMemoryGraphStore() if graph else None,
        embedder=HashEmbeddingProvider(ProviderConfig(provider_type="hash", model_name="hash-128"))
        if embedder
        else None,
    )
    return KnowledgeStore(repository or InMemoryKnowledgeRepository(), indexer, retrieval=retrieval)


@pytest.fixture
def store():
    return _store()


@pytest.mark.asyncio
class TestKnowledgeLifecycle:
    """Test creation, lookup, listing and deletion of knowledge bases."""

    async def test_add_and_get(self, store):
        created = await store.add_knowledge("docs", "project docs")

        loaded = await store.get_knowledge(created.id)
        assert loaded.name == "docs"
        assert loaded.description == "project docs"
        assert loaded.version == 1
        assert (await store.get_knowledge_by_name("docs")).id == created.id

    async def test_duplicate_name(self, store):
        await store.add_knowledge("docs")

        with pytest.raises(KnowledgeError, match="already exists"):
            await store.add_knowledge("docs")

    async def test_concurrent_duplicate_name(self, store):
        outcomes = await asyncio.gather(
            store.add_knowledge("docs"),
            store.add_knowledge("docs"),
            return_exceptions=True,
        )

        assert sum(isinstance(o, KnowledgeError) for o in outcomes) == 1
        assert len(await store.list_knowledge()) == 1

    async def test_empty_name(self, store):
        with pytest.raises(ValueError):
            await store.add_knowledge("  ")

    async def test_missing(self, store):
        with pytest.raises(KnowledgeNotFoundError):
            await store.get_knowledge("nope")
        with pytest.raises(KnowledgeNotFoundError):
            await store.get_knowledge_by_name("nope")

    async def test_list(self, store):
        await store.add_knowledge("a")
        await store.add_knowledge("b")

        assert {k.name for k in await store.list_knowledge()} == {"a", "b"}

    async def test_delete_removes_record_and_index(self, store):
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "hello world")
        await store.add_embedding(kb.id, document.id, [0.1, 0.2], "m")

        await store.delete_knowledge(kb.id)

        with pytest.raises(KnowledgeNotFoundError):
            await store.get_knowledge(kb.id)
        assert store.indexer.vector_store.collections == {}
        assert store.indexer.graph_store.nodes == {}

    async def test_delete_missing(self, store):
        with pytest.raises(KnowledgeNotFoundError):
            await store.delete_knowledge("nope")

    async def test_locks_released_after_use(self, store):
        for i in range(20):
            kb = await store.add_knowledge(f"kb{i}")
            await store.add_document(kb.id, f"document {i}")
        with pytest.raises(KnowledgeError):
            await store.add_knowledge("kb0")

        assert store._locks == {}

    async def test_locks_released_after_concurrent_writes(self, store):
        kb = await store.add_knowledge("docs")

        await asyncio.gather(
            *(store.add_document(kb.id, f"document {i}") for i in range(5)),
            store.add_knowledge("docs"),
            store.add_knowledge("docs"),
            return_exceptions=True,
        )

        assert store._locks == {}
        assert len((await store.get_knowledge(kb.id)).documents) == 5


@pytest.mark.asyncio
class TestDocuments:
    """Test document addition and bulk indexing."""

    async def test_add_document(self, store):
        kb = await store.add_knowledge("docs")

        document = await store.add_document(kb.id, "hello world", {"lang": "en"})

        loaded = await store.get_knowledge(kb.id)
        assert [d.id for d in loaded.documents] == [document.id]
        assert loaded.documents[0].metadata == {"lang": "en"}
        assert f"{document.id}_chunk_0" in store.indexer.graph_store.nodes

    async def test_add_document_missing_knowledge(self, store):
        with pytest.raises(KnowledgeNotFoundError):
            await store.add_document("nope", "hello")

    async def test_add_empty_document(self, store):
        kb = await store.add_knowledge("docs")

        with pytest.raises(ValueError):
            await store.add_document(kb.id, "")

    async def test_concurrent_adds_keep_every_document(self, store):
        kb = await store.add_knowledge("docs")

        await asyncio.gather(*(store.add_document(kb.id, f"document {i}") for i in range(10)))

        assert len((await store.get_knowledge(kb.id)).documents) == 10

    async def test_index_failure_leaves_aggregate_unchanged(self):
        store = _store()
        kb = await store.add_knowledge("docs")
        store.indexer.graph_store = AsyncMock()
        store.indexer.graph_store.create_node.side_effect = RuntimeError("graph down")

        with pytest.raises(IndexingError):
            await store.add_document(kb.id, "hello")

        assert (await store.get_knowledge(kb.id)).documents == []

    async def test_save_failure_after_index(self):
        repository = InMemoryKnowledgeRepository()
        store = _store(repository=repository)
        kb = await store.add_knowledge("docs")
        repository.save = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(PersistenceError) as exc_info:
            await store.add_document(kb.id, "hello")

        assert exc_info.value.index_written is True
        assert isinstance(exc_info.value.original_error, RuntimeError)

    async def test_bulk_index(self, store):
        kb = await store.add_knowledge("docs")

        added = await store.bulk_index(
            kb.id,
            [DocumentInput(content="first"), DocumentInput(content="second", metadata={"n": 2})],
        )

        loaded = await store.get_knowledge(kb.id)
        assert [d.content for d in added] == ["first", "second"]
        assert [d.id for d in loaded.documents] == [d.id for d in added]

    async def test_bulk_index_empty(self, store):
        kb = await store.add_knowledge("docs")

        assert await store.bulk_index(kb.id, []) == []

    async def test_bulk_index_aborts_on_first_failure(self, store):
        kb = await store.add_knowledge("docs")

        with pytest.raises(KnowledgeError, match="document 1"):
            await store.bulk_index(
                kb.id,
                [DocumentInput(content="good"), DocumentInput(content=" "), DocumentInput(content="never")],
            )

        assert (await store.get_knowledge(kb.id)).documents == []


@pytest.mark.asyncio
class TestEmbeddings:
    """Test embedding attachment and vector indexing."""

    async def test_add_embedding(self, store):
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "hello world")

        embedding = await store.add_embedding(kb.id, document.id, [0.1, 0.2], "m")

        assert embedding.dimension == 2
        assert (await store.get_document_embedding(kb.id, document.id)).vector == [0.1, 0.2]
        assert f"knowledge_{kb.id}" in store.indexer.vector_store.collections

    async def test_add_embedding_unknown_document(self, store):
        kb = await store.add_knowledge("docs")

        with pytest.raises(DocumentNotFoundError):
            await store.add_embedding(kb.id, "missing", [0.1], "m")

        assert store.indexer.vector_store.collections == {}

    async def test_add_embedding_without_vector_store(self):
        store = _store(vector=False)
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "hello")

        with pytest.raises(BackendNotConfiguredError):
            await store.add_embedding(kb.id, document.id, [0.1], "m")

        assert (await store.get_knowledge(kb.id)).embeddings == {}

    async def test_get_document_embedding(self, store):
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "hello")

        assert await store.get_document_embedding(kb.id, document.id) is None
        with pytest.raises(DocumentNotFoundError):
            await store.get_document_embedding(kb.id, "missing")

    async def test_embed_documents(self, store):
        kb = await store.add_knowledge("docs")
        first = await store.add_document(kb.id, "first document")
        second = await store.add_document(kb.id, "second document")
        await store.add_embedding(kb.id, first.id, [1.0, 0.0], "manual")

        embeddings = await store.embed_documents(kb.id)

        assert [e.document_id for e in embeddings] == [second.id]
        assert embeddings[0].model == "hash-128"
        assert embeddings[0].dimension == 128
        assert await store.embed_documents(kb.id) == []

    async def test_embed_documents_in_batches(self):
        store = _store()
        store.embed_batch_size = 2
        kb = await store.add_knowledge("docs")
        for i in range(5):
            await store.add_document(kb.id, f"document {i}")
        embedder = store.indexer.embedder
        embedder.embed_batch = AsyncMock(side_effect=lambda texts: [[1.0, 0.0]] * len(texts))

        embeddings = await store.embed_documents(kb.id)

        assert len(embeddings) == 5
        assert [len(c.args[0]) for c in embedder.embed_batch.await_args_list] == [2, 2, 1]

    async def test_embed_documents_explicit_ids(self, store):
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "text")

        assert len(await store.embed_documents(kb.id, [document.id])) == 1
        with pytest.raises(DocumentNotFoundError):
            await store.embed_documents(kb.id, ["missing"])

    async def test_embed_documents_without_embedder(self):
        store = _store(embedder=False)
        kb = await store.add_knowledge("docs")

        with pytest.raises(BackendNotConfiguredError):
            await store.embed_documents(kb.id)

    async def test_increment_version_and_stats(self, store):
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "hello world")
        await store.add_embedding(kb.id, document.id, [0.1, 0.2], "m")

        assert await store.increment_version(kb.id) == 2

        stats = await store.get_stats(kb.id)
        assert stats.knowledge_id == kb.id
        assert stats.document_count == 1
        assert stats.embedding_count == 1
        assert stats.version == 2


@pytest.mark.asyncio
class TestSearchAndRetrieve:
    """Test vector search and hybrid retrieval through the store."""

    async def _populate(self, store):
        kb = await store.add_knowledge("docs")
        fusion = await store.add_document(kb.id, "reciprocal rank fusion merges rankings")
        graph = await store.add_document(kb.id, "graph traversal follows edges")
        await store.embed_documents(kb.id)
        return kb, fusion, graph

    async def test_search_documents(self, store):
        kb, fusion, _ = await self._populate(store)

        documents = await store.search_documents(kb.id, "reciprocal rank fusion", 1)

        assert [d.id for d in documents] == [fusion.id]

    async def test_filter_documents(self, store):
        kb = await store.add_knowledge("docs")
        english = await store.add_document(kb.id, "rank fusion", {"lang": "en"})
        await store.add_document(kb.id, "rank fusion", {"lang": "fr"})
        await store.add_document(kb.id, "rank fusion")
        await store.embed_documents(kb.id)

        documents = await store.filter_documents(kb.id, "rank fusion", {"lang": "en"}, 10)

        assert [d.id for d in documents] == [english.id]

    async def test_filter_documents_needs_every_key(self, store):
        kb = await store.add_knowledge("docs")
        await store.add_document(kb.id, "rank fusion", {"lang": "en"})
        await store.embed_documents(kb.id)

        assert await store.filter_documents(kb.id, "rank fusion", {"lang": "en", "team": "search"}) == []

    async def test_similar_documents_excludes_itself(self, store):
        kb, fusion, graph = await self._populate(store)

        documents = await store.similar_documents(kb.id, fusion.id, 10)

        assert [d.id for d in documents] == [graph.id]

    async def test_similar_documents_unknown_document(self, store):
        kb, _, _ = await self._populate(store)

        with pytest.raises(DocumentNotFoundError):
            await store.similar_documents(kb.id, "nope")

    async def test_semantic_search_without_vector_store(self):
        store = _store(vector=False)
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "hello")

        with pytest.raises(BackendNotConfiguredError):
            await store.similar_documents(kb.id, document.id)
        with pytest.raises(BackendNotConfiguredError):
            await store.filter_documents(kb.id, "hello", {"lang": "en"})

    async def test_search_drops_unknown_ids(self, store):
        kb, _, _ = await self._populate(store)
        await store.indexer.vector_store.upsert(f"knowledge_{kb.id}", "stray", [1.0] * 128)

        documents = await store.search_documents(kb.id, "fusion", 10)

        assert "stray" not in [d.id for d in documents]
        assert len(documents) == 2

    async def test_retrieve(self, store):
        kb, fusion, _ = await self._populate(store)

        context = await store.retrieve(kb.id, "rank fusion", 5)

        assert context.query == "rank fusion"
        assert context.results[0].id in {fusion.id, f"{fusion.id}_chunk_0"}
        assert {r.source for r in context.results} <= {RetrievalSource.VECTOR, RetrievalSource.GRAPH}
        assert context.total_found >= len(context.results)

    async def test_retrieve_is_scoped_to_knowledge(self, store):
        kb, _, _ = await self._populate(store)
        other = await store.add_knowledge("other")

        context = await store.retrieve(other.id, "rank fusion", 5)

        assert context.results == []
        assert kb.id != other.id

    async def test_retrieve_graph_only(self):
        store = _store(vector=False)
        kb = await store.add_knowledge("docs")
        document = await store.add_document(kb.id, "graph traversal")

        context = await store.retrieve(kb.id, "traversal", 5)

        assert [r.id for r in context.results] == [f"{document.id}_chunk_0"]

    async def test_retrieve_without_backends(self):
        store = _store(vector=False, graph=False)
        kb = await store.add_knowledge("docs")

        with pytest.raises(BackendNotConfiguredError):
            await store.retrieve(kb.id, "anything", 5)

    async def test_retrieve_missing_knowledge(self, store):
        with pytest.raises(KnowledgeNotFoundError):
            await store.retrieve("nope", "q", 5)

    async def test_retrieve_both_sources_fail(self, store):
        kb, _, _ = await self._populate(store)
        store.indexer.vector_store.search = AsyncMock(side_effect=RuntimeError("vector down"))
        store.indexer.graph_store.query = AsyncMock(side_effect=RuntimeError("graph down"))

        with pytest.raises(RetrievalError):
            await store.retrieve(kb.id, "fusion", 5)

    async def test_build_retriever_uses_config(self):
        store = _store(retrieval=RetrievalConfig(rerank=False, rrf_k=10, default_limit=3))

        retriever = store.build_retriever("kb")

        assert retriever.reranker is None
        assert retriever.fusion.k == 10
        assert retriever.default_limit == 3

    async def test_close(self, store):
        store.indexer.embedder.close = AsyncMock()

        await store.close()

        store.indexer.embedder.close.assert_awaited_once()
