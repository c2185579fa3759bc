"""OpenAI embedding provider.

Calls the OpenAI embeddings endpoint, or any compatible endpoint given as
extra_params["base_url"]. Other extra_params except "dimension" are passed
to the AsyncOpenAI client.
"""

import os

import structlog

from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError

logger = structlog.get_logger(__name__)

MODEL_DIMENSIONS = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}

DEFAULT_MODEL = "text-embedding-3-small"
FALLBACK_DIMENSION = 1536

# Inputs per request accepted by the embeddings endpoint
MAX_BATCH_SIZE = 2048

# Substrings of API error messages and the cause they point at
_ERROR_HINTS = (
    (("authentication", "api_key"), "OpenAI authentication failed"),
    (("rate_limit",), "OpenAI rate limit exceeded"),
    (("connection", "network"), "Network error connecting to OpenAI"),
)


def _wrap_api_error(error: Exception) -> ProviderError:
    text = str(error)
    lowered = text.lower()
    prefix = next(
        (hint for needles, hint in _ERROR_HINTS if any(n in lowered for n in needles)),
        "OpenAI embedding request failed",
    )
    return ProviderError(message=f"{prefix}: {text}", provider="openai", original_error=error)


def _resolve_api_key(value: str) -> str:
    """api_key may name an environment variable instead of holding the key."""
    return os.environ.get(value) or value


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embedding provider using the OpenAI API.

    Example:
        provider = OpenAIEmbeddingProvider(
            ProviderConfig(provider_type="openai", model_name="text-embedding-3-small", api_key="OPENAI_API_KEY")
        )
    """

    name = "openai"

    def __init__(self, config: ProviderConfig) -> None:
        if not config.model_name:
            config = config.model_copy(update={"model_name": DEFAULT_MODEL})
        super().__init__(config)

        if not config.api_key:
            raise ProviderError(message="API key is required", provider=self.name)

        options = dict(config.extra_params)
        self._dimension = options.pop("dimension", None) or MODEL_DIMENSIONS.get(self.model_name)
        if self._dimension is None:
            self._dimension = FALLBACK_DIMENSION
            logger.warning(
                "unknown_openai_model",
                model_name=self.model_name,
                assumed_dimension=FALLBACK_DIMENSION,
            )

        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ProviderError(
                message="openai package not installed. Install with: pip install 'knowledge-engine[openai]'",
                provider=self.name,
                original_error=e,
            )

        try:
            self.client = AsyncOpenAI(api_key=_resolve_api_key(config.api_key), **options)
        except Exception as e:
            raise ProviderError(
                message=f"Failed to initialize OpenAI client: {e}",
                provider=self.name,
                original_error=e,
            )

        logger.info("openai_embedding_provider_initialized", model_name=self.model_name, dimension=self._dimension)

    async def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        tokens = 0
        for start in range(0, len(texts), MAX_BATCH_SIZE):
            try:
                response = await self.client.embeddings.create(
                    input=texts[start : start + MAX_BATCH_SIZE],
                    model=self.model_name,
                )
            except Exception as e:
                raise _wrap_api_error(e)

            vectors.extend(item.embedding for item in response.data)
            usage = getattr(response, "usage", None)
            if usage is not None:
                tokens += usage.total_tokens

        logger.debug("openai_embeddings_generated", count=len(texts), tokens_used=tokens, model=self.model_name)
        return vectors

    async def close(self) -> None:
        logger.info("closing_openai_embedding_provider", model_name=self.model_name)
        await self.client.close()
