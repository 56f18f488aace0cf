"""Core DocChat data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np

EmbeddingSet = Dict[str, np.ndarray]


@dataclass(slots=True, frozen=True)
class Passage:
    """Sentence-grouped slice of a document, the unit of embedding and retrieval."""

    id: str
    text: str


@dataclass(slots=True)
class CacheEntry:
    """Embeddings persisted for one cache key."""

    key: str
    model: str
    embeddings: EmbeddingSet
    version: int = 1


@dataclass(slots=True)
class Collection:
    """Named partition of a vector store.

    ``handle`` carries the backend object (if any) and is excluded from
    equality so two lookups of the same collection compare equal.
    """

    id: str
    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    handle: Any = field(default=None, repr=False, compare=False)


@dataclass(slots=True)
class IndexedItem:
    """Tuple persisted in the vector store for one passage."""

    id: str
    document: str
    embedding: np.ndarray
    metadata: Dict[str, Any]


@dataclass(slots=True)
class QueryHit:
    id: str
    document: str
    metadata: Dict[str, Any]
    distance: float | None = None


@dataclass(slots=True)
class IndexReport:
    """Outcome of indexing a single document."""

    document: str
    collection: str
    passage_ids: List[str]
    cache_status: str

    @property
    def chunk_count(self) -> int:
        return len(self.passage_ids)


@dataclass(slots=True)
class ChatExchange:
    query: str
    passages: List[str]
    answer: str
