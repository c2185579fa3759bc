"""Embedding providers and the factory that picks one from configuration."""

import importlib

from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError
from knowledge.providers.hashing import HashEmbeddingProvider

# provider_type -> "module:class"; modules are imported on first use so
# optional backends cost nothing unless selected
PROVIDERS = {
    "hash": "knowledge.providers.hashing:HashEmbeddingProvider",
    "local": "knowledge.providers.local:LocalEmbeddingProvider",
    "openai": "knowledge.providers.openai:OpenAIEmbeddingProvider",
}


def create_embedding_provider(config: ProviderConfig) -> EmbeddingProvider:
    """Instantiate the provider named by config.provider_type (case-insensitive).

    Raises:
        ValueError: If provider_type is unknown
        ProviderError: If the backend's dependencies are missing or it fails to start
    """
    key = config.provider_type.lower()
    target = PROVIDERS.get(key)
    if target is None:
        raise ValueError(
            f"Unknown embedding provider type: '{config.provider_type}'. "
            f"Supported types: {', '.join(PROVIDERS)}"
        )

    module_name, _, class_name = target.partition(":")
    provider_class = getattr(importlib.import_module(module_name), class_name)
    return provider_class(config)


__all__ = [
    "PROVIDERS",
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "ProviderConfig",
    "ProviderError",
    "create_embedding_provider",
]
