"""Unit tests for LocalEmbeddingProvider.

sentence-transformers is replaced by a mock module so the tests run without
downloading a model.
"""

import sys
import types
from unittest.mock import MagicMock, patch

import pytest

from knowledge.providers.base import ProviderConfig, ProviderError
from knowledge.providers.local import LocalEmbeddingProvider


def _fake_sentence_transformers(dimension=384, vectors=None):
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = dimension
    model.encode.return_value.tolist.return_value = vectors or [[0.5] * dimension]

    module = types.ModuleType("sentence_transformers")
    module.SentenceTransformer = MagicMock(return_value=model)
    return module, model


def _config(model_name="all-MiniLM-L6-v2"):
    return ProviderConfig(provider_type="local", model_name=model_name)


@pytest.mark.asyncio
class TestLocalEmbeddingProvider:
    """Test LocalEmbeddingProvider functionality."""

    async def test_initialization_known_model(self):
        module, model = _fake_sentence_transformers()

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config())

        module.SentenceTransformer.assert_called_once_with("all-MiniLM-L6-v2")
        assert provider.get_dimension() == 384
        model.get_sentence_embedding_dimension.assert_not_called()
        await provider.close()

    async def test_unknown_model_dimension_inferred(self):
        module, _ = _fake_sentence_transformers(dimension=123)

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config("custom-model"))

        assert provider.get_dimension() == 123

    async def test_embed(self):
        module, model = _fake_sentence_transformers(vectors=[[0.1, 0.2]])

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config())

        assert await provider.embed("hello") == [0.1, 0.2]
        model.encode.assert_called_once_with(["hello"], convert_to_numpy=True, show_progress_bar=False)

    async def test_embed_batch(self):
        module, model = _fake_sentence_transformers(vectors=[[0.1], [0.2]])

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config())

        assert await provider.embed_batch(["a", "b"]) == [[0.1], [0.2]]
        assert await provider.embed_batch([]) == []

    async def test_empty_text_rejected(self):
        module, _ = _fake_sentence_transformers()

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config())

        with pytest.raises(ProviderError):
            await provider.embed("")
        with pytest.raises(ProviderError):
            await provider.embed_batch(["ok", " "])

    async def test_encode_failure_wrapped(self):
        module, model = _fake_sentence_transformers()
        model.encode.side_effect = RuntimeError("boom")

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config())

        with pytest.raises(ProviderError) as exc_info:
            await provider.embed("hello")
        assert isinstance(exc_info.value.original_error, RuntimeError)

    async def test_load_failure_wrapped(self):
        module, _ = _fake_sentence_transformers()
        module.SentenceTransformer.side_effect = OSError("no such model")

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            with pytest.raises(ProviderError):
                LocalEmbeddingProvider(_config("missing"))

    async def test_missing_dependency(self):
        with patch.dict(sys.modules, {"sentence_transformers": None}):
            with pytest.raises(ProviderError) as exc_info:
                LocalEmbeddingProvider(_config())

        assert "sentence-transformers" in exc_info.value.message

    async def test_closed_provider_rejects_calls(self):
        module, _ = _fake_sentence_transformers()

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = LocalEmbeddingProvider(_config())

        await provider.close()

        with pytest.raises(ProviderError):
            await provider.embed("hello")
