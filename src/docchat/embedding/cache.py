"""On-disk JSON cache of document embeddings.

The cache file holds a single entry::

    {"version": 1, "key": "<name>|sha256:<hex>|chunk:<n>|model:<name>",
     "model": "<name>", "embeddings": {"<passage id>": [float, ...]}}

The key binds the embeddings to the exact document text, chunking parameter
and model, so any change to those produces a different key and a miss.
Writes replace the file atomically; concurrent writers race and the last
one wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np

from docchat.config import CacheMode
from docchat.errors import CacheError, CacheMismatchError, CacheMissError
from docchat.models import CacheEntry, EmbeddingSet
from docchat.utils.files import atomic_write_text, compute_sha256

CACHE_VERSION = 1

logger = logging.getLogger(__name__)


def compute_cache_key(document_name: str, content: str, chunk_param: int, model_name: str) -> str:
    """Return the composite key for one embedding pass over a document."""
    return f"{document_name}|sha256:{compute_sha256(content)}|chunk:{chunk_param}|model:{model_name}"


@dataclass(slots=True)
class CacheOutcome:
    embeddings: EmbeddingSet
    status: str  # "hit", "miss" or "off"


def _decode_entry(raw: object) -> CacheEntry:
    if not isinstance(raw, dict):
        raise CacheError("cache file does not contain a JSON object")
    version = raw.get("version")
    if version != CACHE_VERSION:
        raise CacheError(f"unsupported cache version {version!r}")
    key = raw.get("key")
    if not isinstance(key, str) or not key:
        raise CacheError("cache entry has no key")
    vectors = raw.get("embeddings")
    if not isinstance(vectors, dict):
        raise CacheError("cache entry has no embeddings mapping")

    embeddings: EmbeddingSet = {}
    for passage_id, values in vectors.items():
        try:
            vector = np.asarray(values, dtype="float32")
        except (TypeError, ValueError) as exc:
            raise CacheError(f"invalid vector for passage {passage_id!r}") from exc
        if vector.ndim != 1:
            raise CacheError(f"invalid vector for passage {passage_id!r}")
        embeddings[passage_id] = vector
    return CacheEntry(key=key, model=str(raw.get("model", "")), embeddings=embeddings, version=version)


class EmbeddingCache:
    """Single-entry, content-addressed embedding cache stored as JSON."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> CacheEntry | None:
        """Read the stored entry, ``None`` when no cache file exists."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheError(f"unable to read cache file {self.path}: {exc}") from exc
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CacheError(f"malformed cache file {self.path}: {exc}") from exc
        return _decode_entry(raw)

    def get(self, key: str) -> EmbeddingSet | None:
        """Return the embeddings stored under ``key``.

        ``None`` means no cache file exists; a file written for another key
        raises :class:`CacheMismatchError`.
        """
        entry = self.load()
        if entry is None:
            return None
        if entry.key != key:
            raise CacheMismatchError(expected=key, found=entry.key)
        return entry.embeddings

    def put(self, entry: CacheEntry) -> None:
        payload = {
            "version": entry.version,
            "key": entry.key,
            "model": entry.model,
            "embeddings": {
                passage_id: np.asarray(vector, dtype="float32").tolist()
                for passage_id, vector in entry.embeddings.items()
            },
        }
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2))
        except OSError as exc:
            raise CacheError(f"unable to write cache file {self.path}: {exc}") from exc

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], EmbeddingSet],
        *,
        model: str,
        mode: CacheMode | str = CacheMode.AUTO,
    ) -> CacheOutcome:
        """Resolve embeddings for ``key`` according to ``mode``.

        ``off`` always computes and never touches the file. ``load`` only
        reads and fails when nothing matching is stored. ``auto`` reads,
        treats any unusable file as a miss, computes and then stores the
        result; a failed store is logged and ignored.
        """
        mode = CacheMode.parse(mode)

        if mode is CacheMode.OFF:
            return CacheOutcome(compute(), "off")

        if mode is CacheMode.LOAD:
            cached = self.get(key)
            if cached is None:
                raise CacheMissError(key)
            logger.info("Loaded %d cached embeddings for %s", len(cached), key)
            return CacheOutcome(cached, "hit")

        try:
            cached = self.get(key)
        except CacheError as exc:
            logger.info("Embedding cache unusable, recomputing: %s", exc)
            cached = None
        if cached is not None:
            logger.info("Embedding cache hit for %s", key)
            return CacheOutcome(cached, "hit")

        embeddings = compute()
        try:
            self.put(CacheEntry(key=key, model=model, embeddings=embeddings))
        except CacheError as exc:
            logger.warning("Failed to persist embeddings cache: %s", exc)
        else:
            logger.info("Stored %d embeddings in cache %s", len(embeddings), self.path)
        return CacheOutcome(embeddings, "miss")
