"""SQLite storage implementations.

Provides persistent storage for Knowledge aggregates and for the chunk
graph using SQLite. Uses aiosqlite for async operations.
"""

import json
import os
from datetime import datetime
from typing import Any, Optional

import aiosqlite
import structlog

from knowledge.entities import Document, Embedding, Knowledge
from knowledge.storage.base import GraphHit, GraphStore, KnowledgeRepository, StorageError
from knowledge.storage.graph import match_nodes

logger = structlog.get_logger(__name__)


def resolve_db_path(connection_string: Optional[str], default_name: str) -> str:
    """Turn a connection string into a filesystem path.

    Accepts "sqlite:///path", a bare path, ":memory:" or None (meaning
    ~/.knowledge/<default_name>). Parent directories are created.
    """
    if connection_string is None:
        path = os.path.join(os.path.expanduser("~/.knowledge"), default_name)
    elif connection_string.startswith("sqlite:///"):
        path = os.path.expanduser(connection_string[len("sqlite:///"):])
    else:
        path = os.path.expanduser(connection_string)

    if path != ":memory:":
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
    return path


class _SQLiteStore:
    """Connection handling shared by the SQLite stores."""

    schema: tuple[str, ...] = ()
    label = "sqlite"

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            self.connection = await aiosqlite.connect(self.db_path)
            self.connection.row_factory = aiosqlite.Row
            await self.connection.execute("PRAGMA foreign_keys = ON")
            for statement in self.schema:
                await self.connection.execute(statement)
            await self.connection.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite {self.label}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

        logger.info("sqlite_store_initialized", store=self.label, db_path=self.db_path)

    def _require_connection(self) -> aiosqlite.Connection:
        if not self.connection:
            raise StorageError("Database not initialized", storage_type="sqlite")
        return self.connection

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
            self.connection = None


class SQLiteKnowledgeRepository(_SQLiteStore, KnowledgeRepository):
    """Knowledge aggregates in SQLite.

    An aggregate spans three tables. save() rewrites the aggregate's
    documents and embeddings in a single transaction.
    """

    label = "knowledge repository"
    schema = (
        """
        CREATE TABLE IF NOT EXISTS knowledge (
            id TEXT PRIMARY KEY,
            name TEXT UNIQUE NOT NULL,
            description TEXT NOT NULL,
            version INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS documents (
            id TEXT PRIMARY KEY,
            knowledge_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            content TEXT NOT NULL,
            metadata TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (knowledge_id) REFERENCES knowledge(id) ON DELETE CASCADE
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS embeddings (
            knowledge_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            vector TEXT NOT NULL,
            model TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (knowledge_id, document_id),
            FOREIGN KEY (knowledge_id) REFERENCES knowledge(id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_documents_knowledge ON documents(knowledge_id)",
    )

    def __init__(self, connection_string: Optional[str] = None) -> None:
        super().__init__(resolve_db_path(connection_string, "knowledge.db"))

    async def save(self, knowledge: Knowledge) -> None:
        conn = self._require_connection()

        try:
            await conn.execute(
                """
                INSERT INTO knowledge (id, name, description, version, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    version = excluded.version,
                    updated_at = excluded.updated_at
                """,
                (
                    knowledge.id,
                    knowledge.name,
                    knowledge.description,
                    knowledge.version,
                    knowledge.created_at.isoformat(),
                    knowledge.updated_at.isoformat(),
                ),
            )
            await conn.execute("DELETE FROM documents WHERE knowledge_id = ?", (knowledge.id,))
            await conn.execute("DELETE FROM embeddings WHERE knowledge_id = ?", (knowledge.id,))

            await conn.executemany(
                """
                INSERT INTO documents (id, knowledge_id, position, content, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        doc.id,
                        knowledge.id,
                        position,
                        doc.content,
                        json.dumps(doc.metadata),
                        doc.created_at.isoformat(),
                    )
                    for position, doc in enumerate(knowledge.documents)
                ],
            )
            await conn.executemany(
                """
                INSERT INTO embeddings (knowledge_id, document_id, vector, model, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        knowledge.id,
                        emb.document_id,
                        json.dumps(emb.vector),
                        emb.model,
                        emb.created_at.isoformat(),
                    )
                    for emb in knowledge.embeddings.values()
                ],
            )
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageError(
                f"Failed to save knowledge {knowledge.id}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    async def _load(self, row: aiosqlite.Row) -> Knowledge:
        conn = self._require_connection()
        knowledge_id = row["id"]

        async with conn.execute(
            "SELECT * FROM documents WHERE knowledge_id = ? ORDER BY position",
            (knowledge_id,),
        ) as cursor:
            documents = [
                Document(
                    id=doc["id"],
                    content=doc["content"],
                    metadata=json.loads(doc["metadata"]),
                    created_at=datetime.fromisoformat(doc["created_at"]),
                )
                for doc in await cursor.fetchall()
            ]

        async with conn.execute(
            "SELECT * FROM embeddings WHERE knowledge_id = ?", (knowledge_id,)
        ) as cursor:
            embeddings = {
                emb["document_id"]: Embedding(
                    document_id=emb["document_id"],
                    vector=json.loads(emb["vector"]),
                    model=emb["model"],
                    created_at=datetime.fromisoformat(emb["created_at"]),
                )
                for emb in await cursor.fetchall()
            }

        return Knowledge(
            id=knowledge_id,
            name=row["name"],
            description=row["description"],
            documents=documents,
            embeddings=embeddings,
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _find_one(self, where: str, value: str) -> Optional[Knowledge]:
        conn = self._require_connection()
        try:
            async with conn.execute(f"SELECT * FROM knowledge WHERE {where} = ?", (value,)) as cursor:
                row = await cursor.fetchone()
            return await self._load(row) if row else None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to load knowledge by {where}={value}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    async def find_by_id(self, knowledge_id: str) -> Optional[Knowledge]:
        return await self._find_one("id", knowledge_id)

    async def find_by_name(self, name: str) -> Optional[Knowledge]:
        return await self._find_one("name", name)

    async def list_all(self) -> list[Knowledge]:
        conn = self._require_connection()
        async with conn.execute("SELECT * FROM knowledge ORDER BY created_at, id") as cursor:
            rows = await cursor.fetchall()
        return [await self._load(row) for row in rows]

    async def delete(self, knowledge_id: str) -> bool:
        conn = self._require_connection()
        try:
            cursor = await conn.execute("DELETE FROM knowledge WHERE id = ?", (knowledge_id,))
            await conn.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to delete knowledge {knowledge_id}: {e}",
                storage_type="sqlite",
                original_error=e,
            )
        return cursor.rowcount > 0


class SQLiteGraphStore(_SQLiteStore, GraphStore):
    """Graph nodes and edges in SQLite.

    Text queries load the namespace and score it in process, so this suits
    knowledge bases up to tens of thousands of chunks.
    """

    label = "graph store"
    schema = (
        """
        CREATE TABLE IF NOT EXISTS nodes (
            id TEXT PRIMARY KEY,
            collection TEXT NOT NULL,
            properties TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS edges (
            from_id TEXT NOT NULL,
            to_id TEXT NOT NULL,
            relation TEXT NOT NULL,
            properties TEXT NOT NULL,
            PRIMARY KEY (from_id, to_id, relation)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_nodes_collection ON nodes(collection)",
        "CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_id)",
    )

    def __init__(self, connection_string: Optional[str] = None) -> None:
        super().__init__(resolve_db_path(connection_string, "graph.db"))

    async def _write(self, sql: str, params: tuple, action: str) -> None:
        conn = self._require_connection()
        try:
            await conn.execute(sql, params)
            await conn.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to {action}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    async def create_node(
        self, collection: str, id: str, properties: Optional[dict[str, Any]] = None
    ) -> None:
        await self._write(
            "INSERT OR REPLACE INTO nodes (id, collection, properties) VALUES (?, ?, ?)",
            (id, collection, json.dumps(properties or {})),
            f"create node {id}",
        )

    async def create_edge(
        self,
        from_id: str,
        to_id: str,
        relation: str,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._write(
            "INSERT OR REPLACE INTO edges (from_id, to_id, relation, properties) VALUES (?, ?, ?, ?)",
            (from_id, to_id, relation, json.dumps(properties or {})),
            f"create edge {from_id} -[{relation}]-> {to_id}",
        )

    async def query(self, collection: str, text: str, limit: int) -> list[GraphHit]:
        conn = self._require_connection()
        try:
            async with conn.execute(
                "SELECT id, properties FROM nodes WHERE collection = ?", (collection,)
            ) as cursor:
                nodes = {row["id"]: json.loads(row["properties"]) for row in await cursor.fetchall()}

            async with conn.execute(
                """
                SELECT from_id, to_id FROM edges
                WHERE from_id IN (SELECT id FROM nodes WHERE collection = ?)
                   OR to_id IN (SELECT id FROM nodes WHERE collection = ?)
                """,
                (collection, collection),
            ) as cursor:
                edges = [(row["from_id"], row["to_id"]) for row in await cursor.fetchall()]
        except Exception as e:
            raise StorageError(
                f"Failed to query graph namespace {collection}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

        return match_nodes(nodes, edges, text, limit)

    async def delete_node(self, id: str) -> bool:
        conn = self._require_connection()
        try:
            cursor = await conn.execute("DELETE FROM nodes WHERE id = ?", (id,))
            await conn.execute("DELETE FROM edges WHERE from_id = ? OR to_id = ?", (id, id))
            await conn.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to delete node {id}: {e}",
                storage_type="sqlite",
                original_error=e,
            )
        return cursor.rowcount > 0

    async def delete_namespace(self, collection: str) -> int:
        conn = self._require_connection()
        try:
            await conn.execute(
                """
                DELETE FROM edges
                WHERE from_id IN (SELECT id FROM nodes WHERE collection = ?)
                   OR to_id IN (SELECT id FROM nodes WHERE collection = ?)
                """,
                (collection, collection),
            )
            cursor = await conn.execute("DELETE FROM nodes WHERE collection = ?", (collection,))
            await conn.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to delete graph namespace {collection}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

        logger.info("graph_namespace_deleted", collection=collection, nodes_deleted=cursor.rowcount)
        return cursor.rowcount
