"""Retrieval entities - ranked results and the query-scoped context."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RetrievalSource(str, Enum):
    """Which retriever produced a result."""

    VECTOR = "vector"
    GRAPH = "graph"
    HYBRID = "hybrid"


class RetrievalResult(BaseModel):
    """A single ranked hit.

    The score scale depends on the producer: raw similarity for vector hits,
    RRF contributions after fusion, boosted values after reranking.
    """

    id: str
    content: str = ""
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: RetrievalSource = RetrievalSource.VECTOR


class KnowledgeContext(BaseModel):
    """Result of one hybrid retrieval call.

    total_found is the raw number of hits returned by both sources before
    de-duplication, so it can exceed len(results).
    """

    results: list[RetrievalResult] = Field(default_factory=list)
    query: str
    total_found: int = 0
    fused_score: float = 0.0
