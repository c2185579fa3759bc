"""Service layer - Business logic orchestration.

This module contains service classes that orchestrate business logic:
- KnowledgeStore: Knowledge base operations
- open_knowledge_store / initialize_stores: Backend initialization helpers
"""

from knowledge.service.knowledge_store import (
    KnowledgeNotFoundError,
    KnowledgeStore,
    PersistenceError,
)
from knowledge.service.stores import create_embedder, initialize_stores, open_knowledge_store

__all__ = [
    "KnowledgeNotFoundError",
    "KnowledgeStore",
    "PersistenceError",
    "create_embedder",
    "initialize_stores",
    "open_knowledge_store",
]
