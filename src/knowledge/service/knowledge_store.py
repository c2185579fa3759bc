"""Knowledge Store: aggregate-level operations over knowledge bases.

Why this exists:
- The only entry point that mutates Knowledge aggregates
- Orders index writes and aggregate persistence, and reports the case
  where the index is ahead of the saved aggregate (PersistenceError)
- Serialises load-mutate-save sequences per knowledge id

Writers for the same knowledge id queue on an asyncio.Lock, so concurrent
calls in one process cannot lose each other's updates. Writers in other
processes are not coordinated.
"""

import asyncio
import contextlib
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any, Optional

from knowledge.config.schema import RetrievalConfig
from knowledge.core.fusion import ReciprocalRankFusion
from knowledge.core.reranking import LexicalOverlapReranker
from knowledge.entities import (
    Document,
    DocumentInput,
    DocumentNotFoundError,
    Embedding,
    Knowledge,
    KnowledgeContext,
    KnowledgeError,
    KnowledgeStats,
    RetrievalResult,
)
from knowledge.observability.logging import get_logger
from knowledge.pipelines.indexing import BackendNotConfiguredError, Indexer, collection_name
from knowledge.pipelines.retrieval import (
    GraphTraversalRetriever,
    HybridRetriever,
    IndexVectorRetriever,
)
from knowledge.pipelines.search import SemanticSearch
from knowledge.storage.base import KnowledgeRepository

logger = get_logger(__name__)


class KnowledgeStore:
    """Creates, indexes, searches and deletes knowledge bases.

    Example:
        store = KnowledgeStore(repository, indexer)
        kb = await store.add_knowledge("docs", "Project documentation")
        doc = await store.add_document(kb.id, "hello world")
        context = await store.retrieve(kb.id, "hello")
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        indexer: Indexer,
        retrieval: Optional[RetrievalConfig] = None,
        embed_batch_size: int = 32,
    ) -> None:
        self.repository = repository
        self.indexer = indexer
        self.retrieval = retrieval or RetrievalConfig()
        self.embed_batch_size = max(1, embed_batch_size)
        # key -> (lock, callers holding or waiting); entries go once unused
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @contextlib.asynccontextmanager
    async def _lock(self, key: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    async def _load(self, knowledge_id: str) -> Knowledge:
        knowledge = await self.repository.find_by_id(knowledge_id)
        if knowledge is None:
            raise KnowledgeNotFoundError(knowledge_id)
        return knowledge

    async def _save_after_index(self, knowledge: Knowledge, operation: str) -> None:
        try:
            await self.repository.save(knowledge)
        except Exception as e:
            logger.error(
                "knowledge_save_failed_after_index",
                knowledge_id=knowledge.id,
                operation=operation,
                error=str(e),
            )
            raise PersistenceError(
                f"{operation}: index updated but knowledge {knowledge.id} was not saved: {e}",
                index_written=True,
                original_error=e,
            ) from e

    async def add_knowledge(self, name: str, description: str = "") -> Knowledge:
        """Create an empty knowledge base.

        Raises:
            KnowledgeError: If the name is already taken
            ValueError: If name is empty
        """
        async with self._lock(f"name:{name}"):
            if await self.repository.find_by_name(name) is not None:
                raise KnowledgeError(f"Knowledge '{name}' already exists")

            knowledge = Knowledge(name=name, description=description)
            await self.repository.save(knowledge)

        logger.info("knowledge_created", knowledge_id=knowledge.id, name=name)
        return knowledge

    async def get_knowledge(self, knowledge_id: str) -> Knowledge:
        """Raises KnowledgeNotFoundError if absent."""
        return await self._load(knowledge_id)

    async def get_knowledge_by_name(self, name: str) -> Knowledge:
        """Raises KnowledgeNotFoundError if absent."""
        knowledge = await self.repository.find_by_name(name)
        if knowledge is None:
            raise KnowledgeNotFoundError(name)
        return knowledge

    async def list_knowledge(self) -> list[Knowledge]:
        return await self.repository.list_all()

    async def delete_knowledge(self, knowledge_id: str) -> None:
        """Delete a knowledge base, its index data and its record.

        Raises:
            KnowledgeNotFoundError: If the knowledge base does not exist
        """
        async with self._lock(knowledge_id):
            await self._load(knowledge_id)
            await self.indexer.delete_knowledge(knowledge_id)
            await self.repository.delete(knowledge_id)

        logger.info("knowledge_deleted", knowledge_id=knowledge_id)

    async def add_document(
        self,
        knowledge_id: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Document:
        """Add a document, index its chunks, then persist the aggregate.

        Raises:
            KnowledgeNotFoundError: If the knowledge base does not exist
            IndexingError: If chunks cannot be written to the graph
            PersistenceError: If indexing succeeded but the save failed
        """
        async with self._lock(knowledge_id):
            knowledge = await self._load(knowledge_id)
            document = knowledge.add_document(content, metadata)
            chunk_count = await self.indexer.index_document(
                knowledge_id, document.id, document.content, document.metadata
            )
            await self._save_after_index(knowledge, "add_document")

        logger.info(
            "document_added",
            knowledge_id=knowledge_id,
            document_id=document.id,
            chunk_count=chunk_count,
        )
        return document

    async def bulk_index(
        self, knowledge_id: str, documents: Sequence[DocumentInput]
    ) -> list[Document]:
        """Add and index documents in order; the first failure aborts the batch.

        The aggregate is saved once, after every document is indexed. On
        failure nothing is saved, though chunks of documents indexed before
        the failing one stay in the graph.

        Raises:
            KnowledgeError: If any document fails to be added or indexed
            PersistenceError: If indexing succeeded but the save failed
        """
        async with self._lock(knowledge_id):
            knowledge = await self._load(knowledge_id)

            added: list[Document] = []
            for position, item in enumerate(documents):
                try:
                    document = knowledge.add_document(item.content, item.metadata)
                    await self.indexer.index_document(
                        knowledge_id, document.id, document.content, document.metadata
                    )
                except Exception as e:
                    logger.error(
                        "bulk_index_aborted",
                        knowledge_id=knowledge_id,
                        position=position,
                        indexed=len(added),
                        error=str(e),
                    )
                    raise KnowledgeError(
                        f"bulk index aborted at document {position}: {e}"
                    ) from e
                added.append(document)

            await self._save_after_index(knowledge, "bulk_index")

        logger.info("bulk_index_completed", knowledge_id=knowledge_id, document_count=len(added))
        return added

    async def add_embedding(
        self, knowledge_id: str, document_id: str, vector: list[float], model: str
    ) -> Embedding:
        """Attach a document-level vector and write it to the vector index.

        Raises:
            KnowledgeNotFoundError: If the knowledge base does not exist
            DocumentNotFoundError: If the document is not part of it
            BackendNotConfiguredError: If no vector store is configured
            PersistenceError: If the index was updated but the save failed
        """
        async with self._lock(knowledge_id):
            knowledge = await self._load(knowledge_id)
            embedding = knowledge.add_embedding(document_id, vector, model)
            document = knowledge.get_document(document_id)
            await self.indexer.update_vector_index(
                knowledge_id, document_id, embedding.vector, document.metadata if document else None
            )
            await self._save_after_index(knowledge, "add_embedding")

        logger.info(
            "embedding_added",
            knowledge_id=knowledge_id,
            document_id=document_id,
            dimension=embedding.dimension,
            model=model,
        )
        return embedding

    async def embed_documents(
        self, knowledge_id: str, document_ids: Optional[Iterable[str]] = None
    ) -> list[Embedding]:
        """Embed documents with the indexer's embedder and store the vectors.

        Args:
            knowledge_id: Knowledge base to embed
            document_ids: Documents to embed; defaults to those without an embedding

        Raises:
            BackendNotConfiguredError: If no embedder is configured
        """
        embedder = self.indexer.embedder
        if embedder is None:
            raise BackendNotConfiguredError("embedder not configured")

        knowledge = await self._load(knowledge_id)
        if document_ids is None:
            targets = [d for d in knowledge.documents if d.id not in knowledge.embeddings]
        else:
            targets = []
            for document_id in document_ids:
                document = knowledge.get_document(document_id)
                if document is None:
                    raise DocumentNotFoundError(
                        f"Document {document_id} not found in knowledge {knowledge_id}"
                    )
                targets.append(document)

        embeddings: list[Embedding] = []
        for start in range(0, len(targets), self.embed_batch_size):
            batch = targets[start : start + self.embed_batch_size]
            vectors = await embedder.embed_batch([d.content for d in batch])
            for document, vector in zip(batch, vectors):
                embeddings.append(
                    await self.add_embedding(knowledge_id, document.id, vector, embedder.model_name)
                )

        if embeddings:
            logger.info(
                "documents_embedded",
                knowledge_id=knowledge_id,
                document_count=len(embeddings),
                model=embedder.model_name,
            )
        return embeddings

    async def get_document_embedding(self, knowledge_id: str, document_id: str) -> Optional[Embedding]:
        """Return the document's embedding, or None if it has none yet.

        Raises:
            DocumentNotFoundError: If the document is not part of the knowledge base
        """
        knowledge = await self._load(knowledge_id)
        if knowledge.get_document(document_id) is None:
            raise DocumentNotFoundError(
                f"Document {document_id} not found in knowledge {knowledge_id}"
            )
        return knowledge.get_embedding(document_id)

    async def increment_version(self, knowledge_id: str) -> int:
        async with self._lock(knowledge_id):
            knowledge = await self._load(knowledge_id)
            version = knowledge.increment_version()
            await self.repository.save(knowledge)

        logger.info("knowledge_version_incremented", knowledge_id=knowledge_id, version=version)
        return version

    async def search_documents(self, knowledge_id: str, query: str, limit: int = 0) -> list[Document]:
        """Vector search mapped back to owned documents.

        Hits whose id is not a document of the knowledge base are dropped.
        """
        knowledge = await self._load(knowledge_id)
        results = await self.indexer.search(knowledge_id, query, limit)
        return self._owned(knowledge, results)

    def _semantic_search(self) -> SemanticSearch:
        indexer = self.indexer
        if indexer.vector_store is None or indexer.embedder is None:
            raise BackendNotConfiguredError("semantic search needs a vector store and an embedder")
        return SemanticSearch(indexer.vector_store, indexer.embedder, default_limit=indexer.default_limit)

    @staticmethod
    def _owned(knowledge: Knowledge, results: Iterable[RetrievalResult]) -> list[Document]:
        documents = (knowledge.get_document(result.id) for result in results)
        return [document for document in documents if document is not None]

    async def filter_documents(
        self,
        knowledge_id: str,
        query: str,
        filters: dict[str, Any],
        limit: int = 0,
    ) -> list[Document]:
        """Vector search keeping documents whose metadata equals every filter value.

        Filters are applied to the fetched hits, so fewer than limit documents
        may come back.

        Raises:
            KnowledgeNotFoundError: If the knowledge base does not exist
            BackendNotConfiguredError: If no vector store or embedder is configured
        """
        knowledge = await self._load(knowledge_id)
        results = await self._semantic_search().search_with_filters(
            collection_name(knowledge_id), query, filters, limit
        )
        return self._owned(knowledge, results)

    async def similar_documents(self, knowledge_id: str, document_id: str, limit: int = 0) -> list[Document]:
        """Documents near the given one, which is itself excluded.

        The document id string is the query text, not the document content.

        Raises:
            KnowledgeNotFoundError: If the knowledge base does not exist
            DocumentNotFoundError: If the document is not part of it
            BackendNotConfiguredError: If no vector store or embedder is configured
        """
        knowledge = await self._load(knowledge_id)
        if knowledge.get_document(document_id) is None:
            raise DocumentNotFoundError(f"Document {document_id} not found in knowledge {knowledge_id}")

        results = await self._semantic_search().similarity_search(
            collection_name(knowledge_id), document_id, limit
        )
        return self._owned(knowledge, results)

    def build_retriever(self, knowledge_id: str) -> HybridRetriever:
        """Hybrid retriever over the indexer's configured backends."""
        indexer = self.indexer

        vector = None
        if indexer.vector_store is not None and indexer.embedder is not None:
            vector = IndexVectorRetriever(indexer, knowledge_id)
        graph = None
        if indexer.graph_store is not None:
            graph = GraphTraversalRetriever(indexer.graph_store, knowledge_id)

        if vector is None and graph is None:
            raise BackendNotConfiguredError("no retrieval backend configured")

        reranker = None
        if self.retrieval.rerank:
            reranker = LexicalOverlapReranker(
                boost=self.retrieval.rerank_boost,
                case_sensitive=self.retrieval.rerank_case_sensitive,
            )

        return HybridRetriever(
            vector,
            graph,
            fusion=ReciprocalRankFusion(k=self.retrieval.rrf_k),
            reranker=reranker,
            default_limit=self.retrieval.default_limit,
            candidate_multiplier=self.retrieval.candidate_multiplier,
        )

    async def retrieve(
        self,
        knowledge_id: str,
        query: str,
        limit: int = 0,
        retriever: Optional[HybridRetriever] = None,
    ) -> KnowledgeContext:
        """Hybrid retrieval scoped to one knowledge base.

        Raises:
            KnowledgeNotFoundError: If the knowledge base does not exist
            RetrievalError: If both retrieval sources fail
        """
        await self._load(knowledge_id)
        retriever = retriever or self.build_retriever(knowledge_id)
        return await retriever.retrieve(query, limit)

    async def get_stats(self, knowledge_id: str) -> KnowledgeStats:
        knowledge = await self._load(knowledge_id)
        return KnowledgeStats(
            knowledge_id=knowledge.id,
            document_count=len(knowledge.documents),
            embedding_count=len(knowledge.embeddings),
            version=knowledge.version,
            last_updated=knowledge.updated_at,
        )

    async def close(self) -> None:
        """Close the repository, index backends and embedder."""
        await self.repository.close()
        if self.indexer.vector_store is not None:
            await self.indexer.vector_store.close()
        if self.indexer.graph_store is not None:
            await self.indexer.graph_store.close()
        if self.indexer.embedder is not None:
            await self.indexer.embedder.close()


class KnowledgeNotFoundError(KnowledgeError):
    """Raised when a knowledge base does not exist."""

    def __init__(self, knowledge_id: str):
        self.knowledge_id = knowledge_id
        self.message = f"Knowledge not found: {knowledge_id}"
        super().__init__(self.message)


class PersistenceError(KnowledgeError):
    """Raised when the aggregate save fails after index data was written.

    index_written tells callers the external index is now ahead of the
    stored aggregate and may need reconciling.
    """

    def __init__(self, message: str, index_written: bool, original_error: Optional[Exception] = None):
        self.message = message
        self.index_written = index_written
        self.original_error = original_error
        super().__init__(self.message)
