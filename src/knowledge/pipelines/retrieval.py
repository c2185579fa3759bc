"""Hybrid retrieval: vector search and graph traversal, fused and reranked.

Why this exists:
- Vector similarity and graph structure find different relevant material;
  rank fusion lets them vote without comparable score scales
- Survives the loss of either source for a single query

Flow:
    query +--> vector source --+
          +--> graph source  --+--> RRF fusion --> rerank --> truncate --> KnowledgeContext

How to use:
    from knowledge.pipelines.retrieval import (
        GraphTraversalRetriever, HybridRetriever, IndexVectorRetriever,
    )

    retriever = HybridRetriever(
        IndexVectorRetriever(indexer, knowledge_id),
        GraphTraversalRetriever(graph_store, knowledge_id),
        reranker=LexicalOverlapReranker(),
    )
    context = await retriever.retrieve("how does fusion work", limit=5)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from knowledge.config.schema import DEFAULT_LIMIT
from knowledge.core.fusion import FusionStrategy, ReciprocalRankFusion
from knowledge.core.reranking import Reranker
from knowledge.entities import KnowledgeContext, RetrievalResult, RetrievalSource
from knowledge.observability.logging import get_logger
from knowledge.storage.base import GraphStore

logger = get_logger(__name__)


class VectorRetriever(ABC):
    """A ranked source of vector-similarity results."""

    @abstractmethod
    async def search(self, query: str, limit: int) -> list[RetrievalResult]:
        """Return up to limit results, best first."""
        pass


class GraphRetriever(ABC):
    """A ranked source of graph-traversal results."""

    @abstractmethod
    async def traverse(self, query: str, limit: int) -> list[RetrievalResult]:
        """Return up to limit results, best first."""
        pass


class IndexVectorRetriever(VectorRetriever):
    """Vector source backed by Indexer.search for one knowledge base."""

    def __init__(self, indexer, knowledge_id: str) -> None:
        self.indexer = indexer
        self.knowledge_id = knowledge_id

    async def search(self, query: str, limit: int) -> list[RetrievalResult]:
        return await self.indexer.search(self.knowledge_id, query, limit)


class GraphTraversalRetriever(GraphRetriever):
    """Graph source backed by GraphStore.query over one knowledge base's namespace."""

    def __init__(self, graph_store: GraphStore, knowledge_id: str) -> None:
        self.graph_store = graph_store
        self.knowledge_id = knowledge_id

    async def traverse(self, query: str, limit: int) -> list[RetrievalResult]:
        hits = await self.graph_store.query(self.knowledge_id, query, limit)
        return [
            RetrievalResult(
                id=hit.id,
                content=hit.content,
                score=hit.score,
                metadata=dict(hit.properties),
                source=RetrievalSource.GRAPH,
            )
            for hit in hits
        ]


class HybridRetriever:
    """Runs both sources concurrently and fuses their rankings.

    Either source may be None, in which case it contributes nothing. If one
    source raises, its error is logged and retrieval continues with the
    other; if both raise, RetrievalError is raised. There is no internal
    timeout: cancelling the caller cancels both source calls.
    """

    def __init__(
        self,
        vector_retriever: Optional[VectorRetriever],
        graph_retriever: Optional[GraphRetriever],
        fusion: Optional[FusionStrategy] = None,
        reranker: Optional[Reranker] = None,
        default_limit: int = DEFAULT_LIMIT,
        candidate_multiplier: int = 2,
    ) -> None:
        self.vector_retriever = vector_retriever
        self.graph_retriever = graph_retriever
        self.fusion = fusion or ReciprocalRankFusion()
        self.reranker = reranker
        self.default_limit = default_limit if default_limit > 0 else DEFAULT_LIMIT
        self.candidate_multiplier = max(1, candidate_multiplier)

    async def _vector(self, query: str, limit: int) -> list[RetrievalResult]:
        if self.vector_retriever is None:
            return []
        return await self.vector_retriever.search(query, limit)

    async def _graph(self, query: str, limit: int) -> list[RetrievalResult]:
        if self.graph_retriever is None:
            return []
        return await self.graph_retriever.traverse(query, limit)

    async def retrieve(self, query: str, limit: int = 0) -> KnowledgeContext:
        """Retrieve a fused, reranked context for query.

        Args:
            query: Query text
            limit: Maximum results; values <= 0 use the default

        Returns:
            KnowledgeContext with at most limit results

        Raises:
            RetrievalError: If both sources fail
        """
        if limit <= 0:
            limit = self.default_limit
        candidates = limit * self.candidate_multiplier

        # Both sources must finish before fusion; exceptions come back as values
        vector_outcome, graph_outcome = await asyncio.gather(
            self._vector(query, candidates),
            self._graph(query, candidates),
            return_exceptions=True,
        )

        for outcome in (vector_outcome, graph_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        vector_failed = isinstance(vector_outcome, Exception)
        graph_failed = isinstance(graph_outcome, Exception)

        if vector_failed and graph_failed:
            logger.error(
                "hybrid_retrieval_failed",
                query=query,
                vector_error=str(vector_outcome),
                graph_error=str(graph_outcome),
            )
            raise RetrievalError(vector_outcome, graph_outcome)

        if vector_failed:
            logger.warning("retrieval_source_failed", source="vector", error=str(vector_outcome))
            vector_outcome = []
        if graph_failed:
            logger.warning("retrieval_source_failed", source="graph", error=str(graph_outcome))
            graph_outcome = []

        fused = self.fusion.fuse(vector_outcome, graph_outcome)

        if self.reranker is not None and fused:
            try:
                fused = await self.reranker.rerank(query, fused)
            except Exception as e:
                # Fused order stands when reranking fails
                logger.warning("rerank_failed", error=str(e))

        results = fused[:limit]
        fused_score = sum(r.score for r in results) / len(results) if results else 0.0

        context = KnowledgeContext(
            results=results,
            query=query,
            total_found=len(vector_outcome) + len(graph_outcome),
            fused_score=fused_score,
        )

        logger.info(
            "hybrid_retrieval_completed",
            query=query,
            limit=limit,
            vector_count=len(vector_outcome),
            graph_count=len(graph_outcome),
            result_count=len(results),
            fused_score=fused_score,
        )
        return context


class RetrievalError(Exception):
    """Raised when every retrieval source fails."""

    def __init__(self, vector_error: Exception, graph_error: Exception):
        self.vector_error = vector_error
        self.graph_error = graph_error
        self.message = (
            f"both retrieval sources failed: vector: {vector_error}; graph: {graph_error}"
        )
        super().__init__(self.message)
