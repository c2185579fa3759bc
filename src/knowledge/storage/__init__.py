"""Storage layer: vector stores, graph stores and knowledge repositories."""

from typing import Optional

from knowledge.config.schema import GraphStoreConfig, RepositoryConfig, VectorStoreConfig
from knowledge.storage.base import (
    GraphHit,
    GraphStore,
    KnowledgeRepository,
    StorageError,
    VectorHit,
    VectorStore,
)


def create_vector_store(config: VectorStoreConfig, data_dir: Optional[str] = None) -> VectorStore:
    """Create a vector store from configuration.

    Raises:
        ValueError: If store_type is unknown

    Example:
        store = create_vector_store(VectorStoreConfig(store_type="chroma"))
        await store.initialize()
    """
    store_type = config.store_type.value

    if store_type == "memory":
        from knowledge.storage.memory import InMemoryVectorStore

        return InMemoryVectorStore()

    if store_type == "chroma":
        from knowledge.storage.chroma import ChromaVectorStore

        if config.persist_directory:
            persist_directory = str(config.persist_directory)
        elif data_dir:
            persist_directory = f"{data_dir}/chroma"
        else:
            persist_directory = "~/.knowledge/chroma"
        return ChromaVectorStore(persist_directory=persist_directory, **config.extra_params)

    raise ValueError(
        f"Unknown vector store type: '{store_type}'. Supported types: memory, chroma"
    )


def create_graph_store(config: GraphStoreConfig) -> GraphStore:
    """Create a graph store from configuration.

    Raises:
        ValueError: If store_type is unknown
    """
    store_type = config.store_type.value

    if store_type == "memory":
        from knowledge.storage.memory import InMemoryGraphStore

        return InMemoryGraphStore()

    if store_type == "sqlite":
        from knowledge.storage.sqlite import SQLiteGraphStore

        return SQLiteGraphStore(config.connection_string)

    raise ValueError(
        f"Unknown graph store type: '{store_type}'. Supported types: memory, sqlite"
    )


def create_knowledge_repository(config: RepositoryConfig) -> KnowledgeRepository:
    """Create a knowledge repository from configuration.

    Raises:
        ValueError: If store_type is unknown
    """
    store_type = config.store_type.value

    if store_type == "memory":
        from knowledge.storage.memory import InMemoryKnowledgeRepository

        return InMemoryKnowledgeRepository()

    if store_type == "sqlite":
        from knowledge.storage.sqlite import SQLiteKnowledgeRepository

        return SQLiteKnowledgeRepository(config.connection_string)

    raise ValueError(
        f"Unknown repository type: '{store_type}'. Supported types: memory, sqlite"
    )


__all__ = [
    "GraphHit",
    "GraphStore",
    "KnowledgeRepository",
    "StorageError",
    "VectorHit",
    "VectorStore",
    "create_graph_store",
    "create_knowledge_repository",
    "create_vector_store",
]
