"""Entities - Domain models for the knowledge engine.

This module contains the domain entities:
- Knowledge: Aggregate root owning documents and embeddings
- Document: A piece of source text
- Embedding: A vector representation of a document
- RetrievalResult: A ranked hit produced by a retriever
- KnowledgeContext: The fused, query-scoped result set
"""

from knowledge.entities.knowledge import (
    Document,
    DocumentInput,
    DocumentNotFoundError,
    Embedding,
    Knowledge,
    KnowledgeError,
    KnowledgeStats,
)
from knowledge.entities.retrieval import KnowledgeContext, RetrievalResult, RetrievalSource

__all__ = [
    "Document",
    "DocumentInput",
    "DocumentNotFoundError",
    "Embedding",
    "Knowledge",
    "KnowledgeContext",
    "KnowledgeError",
    "KnowledgeStats",
    "RetrievalResult",
    "RetrievalSource",
]
