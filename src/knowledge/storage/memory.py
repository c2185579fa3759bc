"""In-memory storage implementations for testing and development.

These implementations store all data in memory and are useful for:
- Testing without external dependencies
- Development and prototyping
- Small-scale deployments
"""

from typing import Any, Optional

from knowledge.entities import Knowledge
from knowledge.storage.base import (
    GraphHit,
    GraphStore,
    KnowledgeRepository,
    VectorHit,
    VectorStore,
)
from knowledge.storage.graph import match_nodes


def cosine_similarity(vec1: list[float], vec2: list[float]) -> float:
    """Cosine similarity, 0.0 for mismatched or zero-length vectors."""
    if len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = sum(a * a for a in vec1) ** 0.5
    magnitude2 = sum(b * b for b in vec2) ** 0.5

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return dot_product / (magnitude1 * magnitude2)


class InMemoryVectorStore(VectorStore):
    """In-memory vector store scored by cosine similarity."""

    def __init__(self) -> None:
        # collection -> id -> (vector, metadata)
        self.collections: dict[str, dict[str, tuple[list[float], dict[str, Any]]]] = {}

    async def initialize(self) -> None:
        pass

    async def upsert(
        self,
        collection: str,
        id: str,
        vector: list[float],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        entries = self.collections.setdefault(collection, {})
        entries[id] = (list(vector), dict(metadata or {}))

    async def search(
        self, collection: str, query_vector: list[float], limit: int
    ) -> list[VectorHit]:
        entries = self.collections.get(collection)
        if not entries or limit <= 0:
            return []

        hits = [
            VectorHit(
                id=entry_id,
                score=cosine_similarity(query_vector, vector),
                metadata=dict(metadata),
            )
            for entry_id, (vector, metadata) in entries.items()
        ]
        hits.sort(key=lambda hit: (-hit.score, hit.id))
        return hits[:limit]

    async def delete(self, collection: str, id: str) -> bool:
        entries = self.collections.get(collection, {})
        return entries.pop(id, None) is not None

    async def delete_collection(self, collection: str) -> None:
        self.collections.pop(collection, None)

    async def count(self, collection: str) -> int:
        return len(self.collections.get(collection, {}))

    async def close(self) -> None:
        pass


class InMemoryGraphStore(GraphStore):
    """In-memory graph store."""

    def __init__(self) -> None:
        # node id -> (collection, properties)
        self.nodes: dict[str, tuple[str, dict[str, Any]]] = {}
        # (from_id, to_id, relation) -> properties
        self.edges: dict[tuple[str, str, str], dict[str, Any]] = {}

    async def initialize(self) -> None:
        pass

    async def create_node(
        self, collection: str, id: str, properties: Optional[dict[str, Any]] = None
    ) -> None:
        self.nodes[id] = (collection, dict(properties or {}))

    async def create_edge(
        self,
        from_id: str,
        to_id: str,
        relation: str,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        self.edges[(from_id, to_id, relation)] = dict(properties or {})

    async def query(self, collection: str, text: str, limit: int) -> list[GraphHit]:
        namespace = {
            node_id: properties
            for node_id, (node_collection, properties) in self.nodes.items()
            if node_collection == collection
        }
        edges = [(from_id, to_id) for from_id, to_id, _ in self.edges]
        return match_nodes(namespace, edges, text, limit)

    def _drop_edges(self, node_ids: set[str]) -> None:
        self.edges = {
            key: props
            for key, props in self.edges.items()
            if key[0] not in node_ids and key[1] not in node_ids
        }

    async def delete_node(self, id: str) -> bool:
        if self.nodes.pop(id, None) is None:
            return False
        self._drop_edges({id})
        return True

    async def delete_namespace(self, collection: str) -> int:
        doomed = {node_id for node_id, (c, _) in self.nodes.items() if c == collection}
        for node_id in doomed:
            del self.nodes[node_id]
        self._drop_edges(doomed)
        return len(doomed)

    async def close(self) -> None:
        pass


class InMemoryKnowledgeRepository(KnowledgeRepository):
    """In-memory aggregate repository.

    Aggregates are deep-copied on save and on load, matching the isolation
    a persistent backend gives.
    """

    def __init__(self) -> None:
        self.items: dict[str, Knowledge] = {}

    async def initialize(self) -> None:
        pass

    async def save(self, knowledge: Knowledge) -> None:
        self.items[knowledge.id] = knowledge.model_copy(deep=True)

    async def find_by_id(self, knowledge_id: str) -> Optional[Knowledge]:
        knowledge = self.items.get(knowledge_id)
        return knowledge.model_copy(deep=True) if knowledge else None

    async def find_by_name(self, name: str) -> Optional[Knowledge]:
        for knowledge in self.items.values():
            if knowledge.name == name:
                return knowledge.model_copy(deep=True)
        return None

    async def list_all(self) -> list[Knowledge]:
        ordered = sorted(self.items.values(), key=lambda k: (k.created_at, k.id))
        return [k.model_copy(deep=True) for k in ordered]

    async def delete(self, knowledge_id: str) -> bool:
        return self.items.pop(knowledge_id, None) is not None

    async def close(self) -> None:
        pass
