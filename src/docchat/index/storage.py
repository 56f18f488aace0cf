"""Vector store interface and the embedded SQLite implementation."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Sequence

import numpy as np

from docchat.errors import AlignmentError, InputError
from docchat.models import Collection, IndexedItem, QueryHit

LOGGER = logging.getLogger(__name__)


def check_alignment(
    ids: Sequence[str],
    documents: Sequence[str],
    embeddings: Sequence[np.ndarray],
    metadatas: Sequence[Mapping[str, Any]],
) -> None:
    """Reject parallel arrays that differ in length or vector dimension."""
    lengths = {len(ids), len(documents), len(embeddings), len(metadatas)}
    if len(lengths) != 1:
        raise AlignmentError(
            f"misaligned upsert: {len(ids)} ids, {len(documents)} documents, "
            f"{len(embeddings)} embeddings, {len(metadatas)} metadatas"
        )
    dimensions = {int(np.asarray(vector).shape[-1]) for vector in embeddings}
    if len(dimensions) > 1:
        raise AlignmentError(f"embeddings of mixed dimensions in one upsert: {sorted(dimensions)}")


class VectorStore:
    """Capability needed from a vector database.

    Subclasses implement collection lookup/creation, a single-batch add and
    the query; batching and alignment checks live here.
    """

    def __init__(self, *, batch_size: int = 64) -> None:
        if batch_size < 1:
            raise InputError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size

    def get_or_create_collection(self, name: str) -> Collection:
        raise NotImplementedError

    def _add_batch(
        self,
        collection: Collection,
        ids: List[str],
        documents: List[str],
        embeddings: List[np.ndarray],
        metadatas: List[Dict[str, Any]],
    ) -> None:
        raise NotImplementedError

    def count(self, collection: Collection) -> int:
        raise NotImplementedError

    def query(
        self,
        collection: Collection,
        embedding: np.ndarray,
        *,
        top_k: int = 5,
        where: Mapping[str, Any] | None = None,
    ) -> List[QueryHit]:
        raise NotImplementedError

    def upsert(self, collection: Collection, items: Sequence[IndexedItem]) -> int:
        """Store items in batches of ``batch_size``; returns the item count."""
        items = list(items)
        for start in range(0, len(items), self.batch_size):
            part = items[start : start + self.batch_size]
            ids = [item.id for item in part]
            documents = [item.document for item in part]
            embeddings = [np.asarray(item.embedding, dtype="float32") for item in part]
            metadatas = [dict(item.metadata) for item in part]
            check_alignment(ids, documents, embeddings, metadatas)
            self._add_batch(collection, ids, documents, embeddings, metadatas)
            LOGGER.debug("Upserted %d items into %s", len(part), collection.name)
        return len(items)

    def close(self) -> None:
        pass


class SQLiteVectorStore(VectorStore):
    """Embedded vector store: one table of collections, one of items.

    Ranking is brute-force cosine distance computed with numpy. Each thread
    gets its own connection, so a transaction committed or rolled back by
    one request never touches another request's pending writes.
    """

    def __init__(self, db_path: Path, *, batch_size: int = 64) -> None:
        super().__init__(batch_size=batch_size)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        # check_same_thread=False only so close() can run from another thread.
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @property
    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    metadata TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    collection_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    document TEXT NOT NULL,
                    metadata TEXT,
                    embedding BLOB NOT NULL,
                    PRIMARY KEY (collection_id, id),
                    FOREIGN KEY(collection_id) REFERENCES collections(id) ON DELETE CASCADE
                )
                """
            )

    def _find_collection(self, name: str) -> Collection | None:
        row = self._conn.execute(
            "SELECT id, name, metadata FROM collections WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        metadata = json.loads(row["metadata"]) if row["metadata"] else {}
        return Collection(id=row["id"], name=row["name"], metadata=metadata)

    def get_or_create_collection(self, name: str) -> Collection:
        existing = self._find_collection(name)
        if existing is not None:
            return existing
        collection = Collection(id=str(uuid.uuid4()), name=name, metadata={"source": "docchat"})
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO collections(id, name, metadata) VALUES (?, ?, ?)",
                (collection.id, name, json.dumps(collection.metadata)),
            )
        LOGGER.info("Created collection %s", name)
        # Another writer may have won the insert race; re-read the stored row.
        return self._find_collection(name) or collection

    def _add_batch(
        self,
        collection: Collection,
        ids: List[str],
        documents: List[str],
        embeddings: List[np.ndarray],
        metadatas: List[Dict[str, Any]],
    ) -> None:
        with self.transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO items(collection_id, id, document, metadata, embedding)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        collection.id,
                        item_id,
                        document,
                        json.dumps(metadata, ensure_ascii=True),
                        sqlite3.Binary(vector.tobytes()),
                    )
                    for item_id, document, vector, metadata in zip(ids, documents, embeddings, metadatas)
                ],
            )

    def count(self, collection: Collection) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM items WHERE collection_id = ?", (collection.id,)
        ).fetchone()
        return int(row["n"])

    def query(
        self,
        collection: Collection,
        embedding: np.ndarray,
        *,
        top_k: int = 5,
        where: Mapping[str, Any] | None = None,
    ) -> List[QueryHit]:
        sql = "SELECT id, document, metadata, embedding FROM items WHERE collection_id = ?"
        params: list[Any] = [collection.id]
        for field, value in (where or {}).items():
            sql += " AND json_extract(metadata, ?) = ?"
            params.extend([f"$.{field}", value])
        rows = self._conn.execute(sql, params).fetchall()
        if not rows or top_k < 1:
            return []

        query = np.asarray(embedding, dtype="float32")
        vectors = [np.frombuffer(row["embedding"], dtype="float32") for row in rows]
        for row, vector in zip(rows, vectors):
            if vector.shape[0] != query.shape[0]:
                raise AlignmentError(
                    f"query has dimension {query.shape[0]}, "
                    f"item {row['id']} stores {vector.shape[0]}"
                )
        matrix = np.vstack(vectors)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        distances = 1.0 - (matrix @ query) / norms

        if top_k < len(distances):
            top_indices = np.argpartition(distances, top_k)[:top_k]
            top_indices = top_indices[np.argsort(distances[top_indices], kind="stable")]
        else:
            top_indices = np.argsort(distances, kind="stable")

        results: List[QueryHit] = []
        for idx in top_indices:
            row = rows[idx]
            results.append(
                QueryHit(
                    id=row["id"],
                    document=row["document"],
                    metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                    distance=float(distances[idx]),
                )
            )
        return results
