"""Embedding provider interface.

Providers turn document and query text into dense vectors. The base class
owns the input contract (no blank texts, one vector per text, input order
kept); a backend only implements ``_embed_texts`` and sets ``_dimension``.

Adding a backend: subclass EmbeddingProvider, set ``name``, implement
``_embed_texts``, and register it in ``create_embedding_provider``. Heavy
third-party imports belong inside the subclass constructor so that the
package imports without them.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Settings handed to a provider constructor."""

    provider_type: str
    model_name: str
    api_key: Optional[str] = None
    extra_params: dict[str, Any] = Field(default_factory=dict)


class ProviderError(Exception):
    """An embedding backend failed or was misconfigured."""

    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class EmbeddingProvider(ABC):
    """Base class for embedding backends."""

    name: ClassVar[str] = "embedding"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self._dimension: Optional[int] = None

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def get_dimension(self) -> int:
        """Length of every vector this provider returns."""
        if self._dimension is None:
            raise ProviderError(message="Provider has no model loaded", provider=self.name)
        return self._dimension

    @abstractmethod
    async def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed non-blank texts, returning one vector per text in order."""

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts at once.

        Raises:
            ProviderError: If a text is blank or the backend fails
        """
        if not texts:
            return []

        for position, text in enumerate(texts):
            if not text or not text.strip():
                raise ProviderError(
                    message=f"Cannot embed empty text at index {position}",
                    provider=self.name,
                )

        vectors = await self._embed_texts(list(texts))
        if len(vectors) != len(texts):
            raise ProviderError(
                message=f"Backend returned {len(vectors)} vectors for {len(texts)} texts",
                provider=self.name,
            )
        return vectors

    async def embed(self, text: str) -> list[float]:
        """Embed a single text (a query or a whole document)."""
        if not text or not text.strip():
            raise ProviderError(message="Cannot embed empty text", provider=self.name)
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def close(self) -> None:
        """Release clients or models held by the provider."""

    async def __aenter__(self) -> "EmbeddingProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
