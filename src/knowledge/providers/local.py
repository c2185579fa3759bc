"""Local embedding provider using sentence-transformers.

Runs the embedding model in-process, so document content never leaves the
machine and no API key is needed. The model is downloaded on first use and
cached by sentence-transformers afterwards; expect a slow first start.
Keyword arguments for SentenceTransformer (device, cache_folder, ...) are
taken from extra_params.
"""

import asyncio
from typing import Any, Optional

import structlog

from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError

logger = structlog.get_logger(__name__)

# Known output dimensions; other models are asked at load time
MODEL_DIMENSIONS = {
    "all-MiniLM-L6-v2": 384,
    "all-MiniLM-L12-v2": 384,
    "all-mpnet-base-v2": 768,
    "paraphrase-multilingual-MiniLM-L12-v2": 384,
    "paraphrase-multilingual-mpnet-base-v2": 768,
}

INSTALL_HINT = "pip install 'knowledge-engine[local]'"


def _load_model(model_name: str, options: dict[str, Any]) -> Any:
    try:
        from sentence_transformers import SentenceTransformer
    except ImportError as e:
        raise ProviderError(
            message=f"sentence-transformers not installed. Install with: {INSTALL_HINT}",
            provider="local",
            original_error=e,
        )

    try:
        return SentenceTransformer(model_name, **options)
    except Exception as e:
        raise ProviderError(
            message=f"Failed to load model '{model_name}': {e}",
            provider="local",
            original_error=e,
        )


class LocalEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by a SentenceTransformer model.

    Raises ProviderError from the constructor when the library is missing
    or the model cannot be loaded.
    """

    name = "local"

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        logger.info("loading_local_embedding_model", model_name=self.model_name)
        self._model: Optional[Any] = _load_model(self.model_name, config.extra_params)

        known = MODEL_DIMENSIONS.get(self.model_name)
        self._dimension = known or self._model.get_sentence_embedding_dimension()
        logger.info(
            "local_embedding_model_loaded",
            model_name=self.model_name,
            dimension=self._dimension,
            dimension_source="table" if known else "model",
        )

    async def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        if self._model is None:
            raise ProviderError(message="Provider is closed", provider=self.name)

        try:
            # encode is CPU bound; run it off the event loop
            matrix = await asyncio.to_thread(
                self._model.encode,
                texts,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise ProviderError(
                message=f"Failed to generate embeddings: {e}",
                provider=self.name,
                original_error=e,
            )

        logger.debug("local_embeddings_generated", count=len(texts))
        return matrix.tolist()

    async def close(self) -> None:
        if self._model is not None:
            logger.info("closing_local_embedding_provider", model_name=self.model_name)
            self._model = None
