"""Store initialization service.

Builds and initializes every backend named in the configuration and wires
them into a KnowledgeStore.
"""

from pathlib import Path
from typing import Optional

from knowledge.config.loader import load_config
from knowledge.config.schema import AppConfig
from knowledge.pipelines.indexing import Indexer
from knowledge.providers import EmbeddingProvider, ProviderConfig, create_embedding_provider
from knowledge.service.knowledge_store import KnowledgeStore
from knowledge.storage import (
    create_graph_store,
    create_knowledge_repository,
    create_vector_store,
)


def create_embedder(config: AppConfig) -> EmbeddingProvider:
    embedding = config.embedding
    return create_embedding_provider(
        ProviderConfig(
            provider_type=embedding.provider.value,
            model_name=embedding.model_name,
            api_key=embedding.api_key,
            extra_params=embedding.extra_params,
        )
    )


async def initialize_stores(config: AppConfig):
    """Create and initialize the repository, vector store and graph store.

    Returns:
        Tuple of (repository, vector_store, graph_store)
    """
    repository = create_knowledge_repository(config.repository)
    vector_store = create_vector_store(config.vector_store, data_dir=str(config.data_dir))
    graph_store = create_graph_store(config.graph_store)

    await repository.initialize()
    await vector_store.initialize()
    await graph_store.initialize()

    return repository, vector_store, graph_store


async def open_knowledge_store(
    config: Optional[AppConfig] = None, config_path: Optional[Path] = None
) -> KnowledgeStore:
    """Build a ready-to-use KnowledgeStore. Call close() when done.

    Args:
        config: Configuration to use; loaded from config_path when omitted
        config_path: Optional path to a TOML config file
    """
    config = config or load_config(config_path=config_path)

    embedder = create_embedder(config)
    repository, vector_store, graph_store = await initialize_stores(config)

    indexer = Indexer(
        vector_store=vector_store,
        graph_store=graph_store,
        embedder=embedder,
        chunking=config.chunking,
        default_limit=config.retrieval.default_limit,
    )
    return KnowledgeStore(
        repository,
        indexer,
        retrieval=config.retrieval,
        embed_batch_size=config.embedding.batch_size,
    )
