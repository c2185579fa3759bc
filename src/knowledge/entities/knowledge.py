"""Knowledge aggregate - a named, versioned collection of documents.

Documents and embeddings are owned by their Knowledge and are only created
through it, so the aggregate can enforce that every embedding references a
document it holds.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """A single piece of source text inside a knowledge base."""

    id: str = Field(default_factory=_new_id)
    content: str = Field(..., description="Full text content of the document")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("content")
    @classmethod
    def content_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Document content cannot be empty")
        return v


class Embedding(BaseModel):
    """Vector representation of a whole document."""

    document_id: str
    vector: list[float]
    dimension: int = 0
    model: str
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("vector")
    @classmethod
    def vector_not_empty(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("Embedding vector cannot be empty")
        return v

    @model_validator(mode="after")
    def dimension_matches_vector(self) -> "Embedding":
        self.dimension = len(self.vector)
        return self


class DocumentInput(BaseModel):
    """Input for bulk document creation."""

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class KnowledgeStats(BaseModel):
    """Statistics about a knowledge base."""

    knowledge_id: str
    document_count: int
    embedding_count: int
    version: int
    last_updated: datetime


class Knowledge(BaseModel):
    """A knowledge base: the unit of isolation for indexing and retrieval."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    documents: list[Document] = Field(default_factory=list)
    embeddings: dict[str, Embedding] = Field(default_factory=dict)
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Knowledge name cannot be empty")
        return v

    def add_document(self, content: str, metadata: Optional[dict[str, Any]] = None) -> Document:
        """Create a document owned by this knowledge base.

        Raises:
            ValueError: If content is empty
        """
        document = Document(content=content, metadata=dict(metadata or {}))
        self.documents.append(document)
        self.touch()
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        for document in self.documents:
            if document.id == document_id:
                return document
        return None

    def add_embedding(self, document_id: str, vector: list[float], model: str) -> Embedding:
        """Attach an embedding to an existing document (last write wins).

        Raises:
            DocumentNotFoundError: If the document is not part of this knowledge base
            ValueError: If the vector is empty
        """
        if self.get_document(document_id) is None:
            raise DocumentNotFoundError(f"Document {document_id} not found in knowledge {self.id}")

        embedding = Embedding(document_id=document_id, vector=list(vector), model=model)
        self.embeddings[document_id] = embedding
        self.touch()
        return embedding

    def get_embedding(self, document_id: str) -> Optional[Embedding]:
        return self.embeddings.get(document_id)

    def increment_version(self) -> int:
        self.version += 1
        self.touch()
        return self.version

    def touch(self) -> None:
        self.updated_at = _utcnow()


class KnowledgeError(Exception):
    """Base exception for knowledge base operations."""

    pass


class DocumentNotFoundError(KnowledgeError):
    """Raised when a document id is not part of a knowledge base."""

    pass
