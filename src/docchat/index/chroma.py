"""Chroma-backed vector store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping
from urllib.parse import urlparse

import chromadb
import numpy as np
from chromadb.errors import NotFoundError

from docchat.errors import UpstreamError
from docchat.index.storage import VectorStore
from docchat.models import Collection, QueryHit

LOGGER = logging.getLogger(__name__)

COLLECTION_METADATA = {"source": "docchat"}


def connect_http_client(url: str) -> Any:
    """Create a ``chromadb.HttpClient`` from ``http(s)://host:port``."""
    parsed = urlparse(url if "://" in url else f"http://{url}")
    ssl = parsed.scheme == "https"
    port = parsed.port or (443 if ssl else 8000)
    return chromadb.HttpClient(host=parsed.hostname or "localhost", port=port, ssl=ssl)


class ChromaVectorStore(VectorStore):
    """Adapter around a Chroma client (HTTP or in-process)."""

    def __init__(self, client: Any, *, batch_size: int = 64) -> None:
        super().__init__(batch_size=batch_size)
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, batch_size: int = 64) -> ChromaVectorStore:
        try:
            client = connect_http_client(url)
        except Exception as exc:
            raise UpstreamError(f"unable to connect to Chroma at {url}: {exc}") from exc
        return cls(client, batch_size=batch_size)

    @staticmethod
    def _to_collection(native: Any) -> Collection:
        return Collection(
            id=str(native.id),
            name=native.name,
            metadata=dict(native.metadata or {}),
            handle=native,
        )

    def get_or_create_collection(self, name: str) -> Collection:
        """Look the collection up by name, creating it when it does not exist.

        Only a definitive not-found leads to a plain create. Any other lookup
        failure is inconclusive: a create that tolerates an existing
        collection is attempted instead of giving up.
        """
        try:
            native = self._client.get_collection(name=name)
        except NotFoundError:
            LOGGER.info("Collection %s not found, creating it", name)
            native = self._create(name, get_or_create=False)
        except Exception as exc:
            LOGGER.warning("Lookup of collection %s failed (%s), attempting create", name, exc)
            native = self._create(name, get_or_create=True)
        return self._to_collection(native)

    def _create(self, name: str, *, get_or_create: bool) -> Any:
        try:
            return self._client.create_collection(
                name=name,
                metadata=dict(COLLECTION_METADATA),
                get_or_create=get_or_create,
            )
        except Exception as exc:
            raise UpstreamError(f"failed to create collection {name}: {exc}") from exc

    def _add_batch(
        self,
        collection: Collection,
        ids: List[str],
        documents: List[str],
        embeddings: List[np.ndarray],
        metadatas: List[Dict[str, Any]],
    ) -> None:
        try:
            collection.handle.upsert(
                ids=ids,
                documents=documents,
                embeddings=[vector.tolist() for vector in embeddings],
                metadatas=metadatas,
            )
        except Exception as exc:
            raise UpstreamError(f"failed to upsert into chroma: {exc}") from exc

    def count(self, collection: Collection) -> int:
        try:
            return int(collection.handle.count())
        except Exception as exc:
            raise UpstreamError(f"failed to count collection {collection.name}: {exc}") from exc

    def query(
        self,
        collection: Collection,
        embedding: np.ndarray,
        *,
        top_k: int = 5,
        where: Mapping[str, Any] | None = None,
    ) -> List[QueryHit]:
        if top_k < 1:
            return []
        try:
            result = collection.handle.query(
                query_embeddings=[np.asarray(embedding, dtype="float32").tolist()],
                n_results=top_k,
                where=dict(where) if where else None,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise UpstreamError(f"chroma query failed: {exc}") from exc

        ids = _first_group(result.get("ids"))
        documents = _first_group(result.get("documents"))
        metadatas = _first_group(result.get("metadatas"))
        distances = _first_group(result.get("distances"))

        hits: List[QueryHit] = []
        for position, item_id in enumerate(ids):
            document = documents[position] if position < len(documents) else None
            if document is None:
                continue
            metadata = metadatas[position] if position < len(metadatas) else None
            distance = distances[position] if position < len(distances) else None
            hits.append(
                QueryHit(
                    id=item_id,
                    document=document,
                    metadata=dict(metadata or {}),
                    distance=float(distance) if distance is not None else None,
                )
            )
        return hits


def _first_group(groups: Any) -> list:
    if not groups:
        return []
    return list(groups[0] or [])
