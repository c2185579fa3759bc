"""Indexing pipeline: chunk documents into the graph, vectors into collections.

Why this exists:
- Owns the naming conventions shared by every backend
  (collection "knowledge_{id}", chunk id "{document_id}_chunk_{i}",
  relation "contains")
- Keeps graph and vector writes out of the Knowledge Store

Chunks are graph-only: the vector index holds one vector per document,
supplied by the caller through update_vector_index.

How to use:
    from knowledge.pipelines.indexing import Indexer

    indexer = Indexer(vector_store=vectors, graph_store=graph, embedder=provider)
    await indexer.index_document(knowledge_id, document.id, document.content, document.metadata)
"""

from typing import Any, Optional

from knowledge.config.schema import DEFAULT_LIMIT, ChunkingConfig
from knowledge.core.chunking import Chunker
from knowledge.entities import RetrievalResult, RetrievalSource
from knowledge.observability.logging import get_logger
from knowledge.providers.base import EmbeddingProvider
from knowledge.storage.base import GraphStore, VectorStore

logger = get_logger(__name__)

CONTAINS_RELATION = "contains"


def collection_name(knowledge_id: str) -> str:
    return f"knowledge_{knowledge_id}"


def chunk_id(document_id: str, index: int) -> str:
    return f"{document_id}_chunk_{index}"


class Indexer:
    """Writes documents into the graph and vector backends of a knowledge base.

    Any backend may be omitted. Graph writes are skipped when no graph store
    is configured; vector operations raise BackendNotConfiguredError.
    """

    def __init__(
        self,
        vector_store: Optional[VectorStore] = None,
        graph_store: Optional[GraphStore] = None,
        embedder: Optional[EmbeddingProvider] = None,
        chunking: Optional[ChunkingConfig] = None,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self.vector_store = vector_store
        self.graph_store = graph_store
        self.embedder = embedder
        self.chunker = Chunker(config=chunking)
        self.default_limit = default_limit if default_limit > 0 else DEFAULT_LIMIT

    async def index_document(
        self,
        knowledge_id: str,
        document_id: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        """Chunk a document and record its chunks in the graph.

        Each chunk becomes a node "{document_id}_chunk_{i}" in the
        knowledge_id namespace, linked from the document by a "contains"
        edge. Nodes already written stay in place if a later write fails.

        Returns:
            Number of chunks produced

        Raises:
            IndexingError: If a node or edge cannot be written
        """
        chunks = self.chunker.chunk(content)

        if self.graph_store is None:
            logger.debug(
                "graph_indexing_skipped",
                knowledge_id=knowledge_id,
                document_id=document_id,
                reason="no graph store configured",
            )
            return len(chunks)

        for i, text in enumerate(chunks):
            node_id = chunk_id(document_id, i)
            properties = dict(metadata or {})
            properties.update(
                {
                    "chunk_index": i,
                    "document_id": document_id,
                    "knowledge_id": knowledge_id,
                    "content": text,
                }
            )

            try:
                await self.graph_store.create_node(knowledge_id, node_id, properties)
            except Exception as e:
                raise IndexingError(
                    f"Failed to create graph node {node_id}: {e}",
                    original_error=e,
                ) from e

            try:
                await self.graph_store.create_edge(document_id, node_id, CONTAINS_RELATION)
            except Exception as e:
                raise IndexingError(
                    f"Failed to create graph edge {document_id} -> {node_id}: {e}",
                    original_error=e,
                ) from e

        logger.info(
            "document_indexed",
            knowledge_id=knowledge_id,
            document_id=document_id,
            chunk_count=len(chunks),
        )
        return len(chunks)

    async def update_vector_index(
        self,
        knowledge_id: str,
        document_id: str,
        vector: list[float],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Upsert the document's vector into the knowledge base's collection.

        metadata (usually the document's own) is stored with the vector so
        filtered search can match on it; document_id and knowledge_id always
        win over same-named keys.

        Raises:
            BackendNotConfiguredError: If no vector store is configured
        """
        if self.vector_store is None:
            raise BackendNotConfiguredError("vector store not configured")

        await self.vector_store.upsert(
            collection_name(knowledge_id),
            document_id,
            vector,
            {**(metadata or {}), "document_id": document_id, "knowledge_id": knowledge_id},
        )

        logger.debug(
            "vector_index_updated",
            knowledge_id=knowledge_id,
            document_id=document_id,
            dimension=len(vector),
        )

    async def search(self, knowledge_id: str, query: str, limit: int = 0) -> list[RetrievalResult]:
        """Embed query and search the knowledge base's vector collection.

        Raises:
            BackendNotConfiguredError: If the embedder or vector store is missing
            ValueError: If query is empty
        """
        if self.embedder is None:
            raise BackendNotConfiguredError("embedder not configured")
        if self.vector_store is None:
            raise BackendNotConfiguredError("vector store not configured")
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        if limit <= 0:
            limit = self.default_limit

        query_vector = await self.embedder.embed(query)
        hits = await self.vector_store.search(collection_name(knowledge_id), query_vector, limit)

        results = []
        for hit in hits:
            content = hit.metadata.get("content")
            results.append(
                RetrievalResult(
                    id=hit.id,
                    content=content if isinstance(content, str) else f"Document: {hit.id}",
                    score=hit.score,
                    metadata=dict(hit.metadata),
                    source=RetrievalSource.VECTOR,
                )
            )

        logger.debug(
            "vector_search_completed",
            knowledge_id=knowledge_id,
            limit=limit,
            result_count=len(results),
        )
        return results

    async def delete_knowledge(self, knowledge_id: str) -> None:
        """Remove a knowledge base's index data.

        Drops the vector collection and, where the graph store supports it,
        every node of the knowledge_id namespace with its edges.
        """
        if self.vector_store is not None:
            await self.vector_store.delete_collection(collection_name(knowledge_id))

        nodes_deleted = 0
        if self.graph_store is not None:
            try:
                nodes_deleted = await self.graph_store.delete_namespace(knowledge_id)
            except NotImplementedError:
                logger.warning(
                    "graph_cleanup_skipped",
                    knowledge_id=knowledge_id,
                    graph_store=type(self.graph_store).__name__,
                )

        logger.info(
            "knowledge_index_deleted",
            knowledge_id=knowledge_id,
            graph_nodes_deleted=nodes_deleted,
        )


class IndexingError(Exception):
    """Raised when index data cannot be written."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class BackendNotConfiguredError(IndexingError):
    """Raised when an operation needs a backend the indexer was built without."""

    pass
