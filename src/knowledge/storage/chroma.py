"""ChromaDB-backed vector store.

Each knowledge base gets its own Chroma collection under the persist
directory, using cosine distance. Chroma runs embedded in the process, so
no server is needed; it suits a single node with up to a few hundred
thousand vectors. Chroma only stores scalar metadata, so other values are
converted to strings on write.
"""

import os
import re
from typing import Any, Optional

import structlog

from knowledge.storage.base import StorageError, VectorHit, VectorStore

logger = structlog.get_logger(__name__)

_SCALAR_TYPES = (str, int, float, bool)


def sanitize_collection_name(name: str) -> str:
    """Map an arbitrary collection name onto one Chroma accepts.

    Chroma collection names must be 3-63 characters long, start and end
    with an alphanumeric character, and contain only alphanumerics,
    underscores or hyphens.
    """
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", name)

    if sanitized and not sanitized[0].isalnum():
        sanitized = "c" + sanitized
    if sanitized and not sanitized[-1].isalnum():
        sanitized = sanitized + "0"

    if len(sanitized) < 3:
        sanitized = sanitized + "_default"
    if len(sanitized) > 63:
        sanitized = sanitized[:63]

    return sanitized


def _scalar_metadata(metadata: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not metadata:
        return None
    return {
        key: value if isinstance(value, _SCALAR_TYPES) else str(value)
        for key, value in metadata.items()
        if value is not None
    }


class ChromaVectorStore(VectorStore):
    """Chroma vector store.

    Each logical collection ("knowledge_{id}") maps to one Chroma
    collection. Scores are 1 / (1 + distance), so higher is more similar.

    Example:
        store = ChromaVectorStore(persist_directory="~/.knowledge/chroma")
        await store.initialize()
    """

    def __init__(self, persist_directory: str = "./chroma_db", distance: str = "cosine") -> None:
        self.persist_directory = os.path.expanduser(persist_directory)
        self.distance = distance
        self._client = None
        self._collections: dict[str, Any] = {}

        logger.info(
            "initializing_chroma_vector_store",
            persist_directory=self.persist_directory,
        )

    async def initialize(self) -> None:
        """Create the persistent Chroma client.

        Raises:
            StorageError: If chromadb is missing or the client cannot start
        """
        try:
            import chromadb
        except ImportError as e:
            raise StorageError(
                message="chromadb not installed. Install with: pip install chromadb",
                storage_type="chroma",
                original_error=e,
            )

        try:
            self._client = chromadb.PersistentClient(path=self.persist_directory)
        except Exception as e:
            raise StorageError(
                message=f"Failed to initialize Chroma client: {e}",
                storage_type="chroma",
                original_error=e,
            )

        logger.info("chroma_vector_store_initialized")

    def _require_client(self) -> Any:
        if self._client is None:
            raise StorageError(
                message="Chroma client not initialized; call initialize() first",
                storage_type="chroma",
            )
        return self._client

    def _get_or_create(self, collection: str) -> Any:
        name = sanitize_collection_name(collection)
        if name not in self._collections:
            client = self._require_client()
            try:
                self._collections[name] = client.get_or_create_collection(
                    name=name,
                    metadata={"hnsw:space": self.distance},
                )
            except Exception as e:
                raise StorageError(
                    message=f"Failed to get/create collection '{name}': {e}",
                    storage_type="chroma",
                    original_error=e,
                )
            logger.debug("collection_ready", collection=name)
        return self._collections[name]

    def _find(self, collection: str) -> Optional[Any]:
        name = sanitize_collection_name(collection)
        if name in self._collections:
            return self._collections[name]

        client = self._require_client()
        existing = {getattr(c, "name", c) for c in client.list_collections()}
        if name not in existing:
            return None

        self._collections[name] = client.get_collection(name=name)
        return self._collections[name]

    async def upsert(
        self,
        collection: str,
        id: str,
        vector: list[float],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        target = self._get_or_create(collection)
        try:
            target.upsert(
                ids=[id],
                embeddings=[list(vector)],
                metadatas=[_scalar_metadata(metadata)] if metadata else None,
            )
        except Exception as e:
            raise StorageError(
                message=f"Failed to upsert '{id}' into '{collection}': {e}",
                storage_type="chroma",
                original_error=e,
            )

        logger.debug("vector_upserted", collection=collection, id=id)

    async def search(
        self, collection: str, query_vector: list[float], limit: int
    ) -> list[VectorHit]:
        if limit <= 0:
            return []

        try:
            target = self._find(collection)
            if target is None:
                return []

            count = target.count()
            if count == 0:
                return []

            response = target.query(
                query_embeddings=[list(query_vector)],
                n_results=min(limit, count),
                include=["metadatas", "distances"],
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                message=f"Failed to search collection '{collection}': {e}",
                storage_type="chroma",
                original_error=e,
            )

        ids = response["ids"][0] if response.get("ids") else []
        distances = response["distances"][0] if response.get("distances") else []
        metadatas = response["metadatas"][0] if response.get("metadatas") else []

        hits = []
        for i, hit_id in enumerate(ids):
            distance = distances[i] if i < len(distances) else 0.0
            metadata = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            hits.append(
                VectorHit(id=hit_id, score=1.0 / (1.0 + distance), metadata=dict(metadata))
            )

        hits.sort(key=lambda hit: (-hit.score, hit.id))
        return hits

    async def delete(self, collection: str, id: str) -> bool:
        target = self._find(collection)
        if target is None:
            return False

        try:
            found = target.get(ids=[id])
            if not found["ids"]:
                return False
            target.delete(ids=[id])
        except Exception as e:
            raise StorageError(
                message=f"Failed to delete '{id}' from '{collection}': {e}",
                storage_type="chroma",
                original_error=e,
            )
        return True

    async def delete_collection(self, collection: str) -> None:
        name = sanitize_collection_name(collection)
        if self._find(collection) is None:
            return

        try:
            self._require_client().delete_collection(name)
        except Exception as e:
            raise StorageError(
                message=f"Failed to delete collection '{name}': {e}",
                storage_type="chroma",
                original_error=e,
            )
        self._collections.pop(name, None)
        logger.info("collection_deleted", collection=name)

    async def close(self) -> None:
        # PersistentClient flushes on write; dropping the reference is enough
        self._collections.clear()
        self._client = None
        logger.info("chroma_vector_store_closed")
