"""Deterministic hashing embedding provider.

Maps each alphanumeric token to a signed bucket of a fixed-size vector
(the hashing trick) and L2-normalises the result. It needs no model
download or API key, so it is the default provider for local runs and
tests. Texts sharing tokens get positive cosine similarity; nothing more
semantic than that should be expected.
"""

import hashlib
import math

import structlog

from knowledge.core.reranking import tokenize
from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError

logger = structlog.get_logger(__name__)

DEFAULT_DIMENSION = 256


class HashEmbeddingProvider(EmbeddingProvider):
    """Token-hashing embedding provider.

    The dimension comes from extra_params["dimension"], or from a model name
    of the form "hash-<dimension>".

    Example:
        provider = HashEmbeddingProvider(ProviderConfig(provider_type="hash", model_name="hash-128"))
        vector = await provider.embed("graph fusion")
    """

    name = "hash"

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self._dimension = self._resolve_dimension(config)
        logger.info(
            "hash_embedding_provider_initialized",
            model_name=config.model_name,
            dimension=self._dimension,
        )

    @staticmethod
    def _resolve_dimension(config: ProviderConfig) -> int:
        dimension = config.extra_params.get("dimension")
        if dimension is None:
            _, _, suffix = config.model_name.rpartition("-")
            dimension = int(suffix) if suffix.isdigit() else DEFAULT_DIMENSION
        dimension = int(dimension)
        if dimension <= 0:
            raise ProviderError(
                message=f"Embedding dimension must be positive, got {dimension}",
                provider="hash",
            )
        return dimension

    def _vectorize(self, text: str) -> list[float]:
        size = self.get_dimension()
        vector = [0.0] * size
        for token in tokenize(text, case_sensitive=False):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            sign = 1.0 if (value >> 63) & 1 == 0 else -1.0
            vector[value % size] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    async def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]
