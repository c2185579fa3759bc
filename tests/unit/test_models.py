"""Unit tests for domain entities."""

import pytest
from pydantic import ValidationError

from knowledge.entities import (
    Document,
    DocumentNotFoundError,
    Embedding,
    Knowledge,
    KnowledgeContext,
    RetrievalResult,
    RetrievalSource,
)


class TestKnowledge:
    """Test the Knowledge aggregate."""

    def test_defaults(self):
        knowledge = Knowledge(name="docs")

        assert knowledge.version == 1
        assert knowledge.description == ""
        assert knowledge.documents == []
        assert knowledge.embeddings == {}
        assert knowledge.id

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            Knowledge(name="   ")

    def test_add_document_preserves_order(self):
        knowledge = Knowledge(name="docs")

        first = knowledge.add_document("first")
        second = knowledge.add_document("second", {"lang": "en"})

        assert [d.id for d in knowledge.documents] == [first.id, second.id]
        assert knowledge.get_document(second.id).metadata == {"lang": "en"}

    def test_add_document_copies_metadata(self):
        metadata = {"k": "v"}
        document = Knowledge(name="docs").add_document("text", metadata)

        metadata["k"] = "changed"
        assert document.metadata == {"k": "v"}

    def test_add_document_rejects_empty_content(self):
        with pytest.raises(ValidationError):
            Knowledge(name="docs").add_document("")

    def test_add_embedding_sets_dimension(self):
        knowledge = Knowledge(name="docs")
        document = knowledge.add_document("hello world")

        embedding = knowledge.add_embedding(document.id, [0.1, 0.2, 0.3], "m")

        assert embedding.dimension == 3
        assert knowledge.get_embedding(document.id) is embedding

    def test_add_embedding_last_write_wins(self):
        knowledge = Knowledge(name="docs")
        document = knowledge.add_document("hello")

        knowledge.add_embedding(document.id, [1.0], "a")
        knowledge.add_embedding(document.id, [2.0, 3.0], "b")

        assert len(knowledge.embeddings) == 1
        assert knowledge.get_embedding(document.id).model == "b"

    def test_add_embedding_unknown_document(self):
        with pytest.raises(DocumentNotFoundError):
            Knowledge(name="docs").add_embedding("missing", [0.1], "m")

    def test_add_embedding_empty_vector(self):
        knowledge = Knowledge(name="docs")
        document = knowledge.add_document("hello")

        with pytest.raises(ValidationError):
            knowledge.add_embedding(document.id, [], "m")

    def test_increment_version(self):
        knowledge = Knowledge(name="docs")
        before = knowledge.updated_at

        assert knowledge.increment_version() == 2
        assert knowledge.updated_at >= before

    def test_version_must_be_positive(self):
        with pytest.raises(ValidationError):
            Knowledge(name="docs", version=0)


class TestEmbedding:
    def test_dimension_follows_vector(self):
        embedding = Embedding(document_id="d", vector=[0.0] * 4, dimension=99, model="m")
        assert embedding.dimension == 4


class TestDocument:
    def test_whitespace_content_rejected(self):
        with pytest.raises(ValidationError):
            Document(content=" \n ")


class TestRetrievalModels:
    def test_result_defaults(self):
        result = RetrievalResult(id="x")

        assert result.source == RetrievalSource.VECTOR
        assert result.score == 0.0
        assert result.metadata == {}

    def test_context_defaults(self):
        context = KnowledgeContext(query="q")

        assert context.results == []
        assert context.total_found == 0
        assert context.fused_score == 0.0

    def test_source_values(self):
        assert RetrievalSource("hybrid") is RetrievalSource.HYBRID
