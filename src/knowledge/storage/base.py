"""Storage interfaces shared by all backends.

Three concerns are kept apart: VectorStore holds embeddings per collection,
GraphStore holds nodes and edges per namespace, and KnowledgeRepository
persists the Knowledge aggregate itself. Each has an in-memory backend for
tests and a persistent one (Chroma or SQLite); factories in
knowledge.storage choose between them from configuration.

Collections partition data per knowledge base: vector collections are
named "knowledge_{id}" and graph namespaces use the knowledge id itself.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from knowledge.entities import Knowledge


class VectorHit(BaseModel):
    """A vector search match: higher score means more similar."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class GraphHit(BaseModel):
    """A graph traversal match."""

    id: str
    score: float
    content: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)


class VectorStore(ABC):
    """Abstract interface for vector storage backends.

    Implementations must handle:
    - Upserting vectors with metadata into named collections
    - Similarity search within a collection
    - Deleting single entries and whole collections
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (open clients, create directories, etc.)."""
        pass

    @abstractmethod
    async def upsert(
        self,
        collection: str,
        id: str,
        vector: list[float],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Insert or replace the vector stored under id.

        The collection is created on first write.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def search(
        self, collection: str, query_vector: list[float], limit: int
    ) -> list[VectorHit]:
        """Return up to limit hits, most similar first.

        Searching a collection that does not exist returns an empty list.

        Raises:
            StorageError: If the search fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        """Delete one entry.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def delete_collection(self, collection: str) -> None:
        """Drop a collection and everything in it. Missing collections are ignored."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass


class GraphStore(ABC):
    """Abstract interface for graph storage backends.

    Nodes live in a collection (namespace) and carry arbitrary properties.
    Edges are directed and labelled with a relation. An edge endpoint may
    name a node that was never created (documents are edge sources without
    being nodes themselves).
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create tables, etc.)."""
        pass

    @abstractmethod
    async def create_node(
        self, collection: str, id: str, properties: Optional[dict[str, Any]] = None
    ) -> None:
        """Create or replace a node.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def create_edge(
        self,
        from_id: str,
        to_id: str,
        relation: str,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        """Create a directed edge; recreating an identical edge is a no-op.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def query(self, collection: str, text: str, limit: int) -> list[GraphHit]:
        """Find nodes in a collection related to text, best first.

        Raises:
            StorageError: If the query fails
        """
        pass

    @abstractmethod
    async def delete_node(self, id: str) -> bool:
        """Delete a node and its edges.

        Returns:
            True if the node existed
        """
        pass

    @abstractmethod
    async def delete_namespace(self, collection: str) -> int:
        """Delete every node in a collection, plus edges touching them.

        Returns:
            Number of nodes deleted
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass


class KnowledgeRepository(ABC):
    """Persistence for Knowledge aggregates.

    save() writes the whole aggregate (documents and embeddings included).
    Loads return independent copies: mutating a loaded aggregate has no
    effect until it is saved.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create tables, etc.)."""
        pass

    @abstractmethod
    async def save(self, knowledge: Knowledge) -> None:
        """Insert or replace an aggregate.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find_by_id(self, knowledge_id: str) -> Optional[Knowledge]:
        """Return the aggregate, or None if absent."""
        pass

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Knowledge]:
        """Return the aggregate with this name, or None if absent."""
        pass

    @abstractmethod
    async def list_all(self) -> list[Knowledge]:
        """Return all aggregates ordered by creation time."""
        pass

    @abstractmethod
    async def delete(self, knowledge_id: str) -> bool:
        """Delete an aggregate.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass


class StorageError(Exception):
    """Base exception for storage errors."""

    def __init__(self, message: str, storage_type: str, original_error: Optional[Exception] = None):
        self.message = message
        self.storage_type = storage_type
        self.original_error = original_error
        super().__init__(self.message)
