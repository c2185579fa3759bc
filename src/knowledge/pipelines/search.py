"""Semantic search over a single vector collection.

How to use:
    from knowledge.pipelines.search import SemanticSearch

    search = SemanticSearch(vector_store, embedder)
    results = await search.search_with_filters("knowledge_123", "rrf", {"lang": "en"})
"""

from typing import Any, Optional

from knowledge.config.schema import DEFAULT_LIMIT
from knowledge.entities import RetrievalResult, RetrievalSource
from knowledge.observability.logging import get_logger
from knowledge.providers.base import EmbeddingProvider
from knowledge.storage.base import VectorHit, VectorStore

logger = get_logger(__name__)


def matches_filters(metadata: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
    """Exact-match AND over filters; a key missing from metadata fails the match."""
    if not filters:
        return True
    for key, expected in filters.items():
        if key not in metadata or metadata[key] != expected:
            return False
    return True


class SemanticSearch:
    """Embeds queries and searches a named vector collection."""

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: EmbeddingProvider,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self.vector_store = vector_store
        self.embedder = embedder
        self.default_limit = default_limit if default_limit > 0 else DEFAULT_LIMIT

    def _limit(self, limit: int) -> int:
        return limit if limit > 0 else self.default_limit

    @staticmethod
    def _to_result(hit: VectorHit) -> RetrievalResult:
        content = hit.metadata.get("content")
        return RetrievalResult(
            id=hit.id,
            content=content if isinstance(content, str) else "",
            score=hit.score,
            metadata=dict(hit.metadata),
            source=RetrievalSource.VECTOR,
        )

    async def _query(self, collection: str, text: str, limit: int) -> list[VectorHit]:
        if not text or not text.strip():
            raise ValueError("Query cannot be empty")
        vector = await self.embedder.embed(text)
        return await self.vector_store.search(collection, vector, limit)

    async def search(self, collection: str, query: str, limit: int = 0) -> list[RetrievalResult]:
        """Return the nearest entries to query, best first.

        Raises:
            ValueError: If query is empty
        """
        limit = self._limit(limit)
        hits = await self._query(collection, query, limit)

        logger.info("semantic_search_completed", collection=collection, result_count=len(hits))
        return [self._to_result(hit) for hit in hits]

    async def search_with_filters(
        self,
        collection: str,
        query: str,
        filters: Optional[dict[str, Any]] = None,
        limit: int = 0,
    ) -> list[RetrievalResult]:
        """Search, then keep hits whose metadata matches every filter exactly.

        Filtering happens after the fetch, so fewer than limit results may
        come back even when more matching entries exist.
        """
        limit = self._limit(limit)
        hits = await self._query(collection, query, limit)
        kept = [hit for hit in hits if matches_filters(hit.metadata, filters)]

        logger.info(
            "filtered_search_completed",
            collection=collection,
            fetched=len(hits),
            result_count=len(kept),
            filter_keys=sorted(filters or {}),
        )
        return [self._to_result(hit) for hit in kept]

    async def similarity_search(
        self, collection: str, document_id: str, limit: int = 0
    ) -> list[RetrievalResult]:
        """Find entries similar to a document, excluding the document itself.

        The document id string is embedded as the query text; the stored
        vector is not looked up.
        """
        limit = self._limit(limit)
        hits = await self._query(collection, document_id, limit + 1)
        similar = [hit for hit in hits if hit.id != document_id][:limit]

        logger.info(
            "similarity_search_completed",
            collection=collection,
            document_id=document_id,
            result_count=len(similar),
        )
        return [self._to_result(hit) for hit in similar]
