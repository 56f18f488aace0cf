"""Document indexing pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from docchat.config import CacheMode
from docchat.embedding.cache import EmbeddingCache, compute_cache_key
from docchat.embedding.encoder import BaseEmbedder
from docchat.errors import AlignmentError, InputError
from docchat.index.storage import VectorStore
from docchat.models import Collection, EmbeddingSet, IndexedItem, IndexReport, Passage
from docchat.utils.files import read_text_document
from docchat.utils.text import chunk_document

LOGGER = logging.getLogger(__name__)


def build_items(document_name: str, passages: Sequence[Passage], embeddings: EmbeddingSet) -> List[IndexedItem]:
    """Pair passages with their vectors in passage order.

    Raises :class:`AlignmentError` naming the first passage without an
    embedding, so a partial set is never handed to the store.
    """
    items: List[IndexedItem] = []
    for passage in passages:
        vector = embeddings.get(passage.id)
        if vector is None:
            raise AlignmentError(f"missing embedding for chunk id={passage.id}")
        items.append(
            IndexedItem(
                id=passage.id,
                document=passage.text,
                embedding=vector,
                metadata={"context": document_name, "docId": passage.id, "len": len(passage.text)},
            )
        )
    return items


class Indexer:
    """Coordinates chunking, cached embedding and persistence of one document."""

    def __init__(
        self,
        embedder: BaseEmbedder,
        store: VectorStore,
        collection: Collection,
        *,
        cache: EmbeddingCache | None = None,
        cache_mode: CacheMode | str = CacheMode.AUTO,
        sentences_per_chunk: int = 2,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.collection = collection
        self.cache = cache
        self.cache_mode = CacheMode.parse(cache_mode)
        self.sentences_per_chunk = sentences_per_chunk

    def chunk(self, document_name: str, text: str) -> List[Passage]:
        return chunk_document(document_name, text, self.sentences_per_chunk)

    def _embed(self, document_name: str, text: str, passages: List[Passage], mode: CacheMode) -> tuple[EmbeddingSet, str]:
        if self.cache is None or mode is CacheMode.OFF:
            return self.embedder.embed(passages), "off"
        key = compute_cache_key(document_name, text, self.sentences_per_chunk, self.embedder.model_name)
        outcome = self.cache.get_or_compute(
            key,
            lambda: self.embedder.embed(passages),
            model=self.embedder.model_name,
            mode=mode,
        )
        return outcome.embeddings, outcome.status

    def index_document(
        self, document_name: str, text: str, *, cache_mode: CacheMode | str | None = None
    ) -> IndexReport:
        """Chunk, embed and upsert one document."""
        passages = self.chunk(document_name, text)
        if not passages:
            raise InputError(f"Document {document_name!r} has no text to index")

        mode = self.cache_mode if cache_mode is None else CacheMode.parse(cache_mode)
        embeddings, cache_status = self._embed(document_name, text, passages, mode)
        items = build_items(document_name, passages, embeddings)
        self.store.upsert(self.collection, items)

        LOGGER.info(
            "Indexed %s: %d chunks into %s (cache: %s, collection size: %s)",
            document_name,
            len(items),
            self.collection.name,
            cache_status,
            self.store.count(self.collection),
        )
        return IndexReport(
            document=document_name,
            collection=self.collection.name,
            passage_ids=[item.id for item in items],
            cache_status=cache_status,
        )

    def index_file(self, path: Path, *, cache_mode: CacheMode | str | None = None) -> IndexReport:
        """Index a UTF-8 text file; the path string is the document name."""
        text = read_text_document(Path(path))
        return self.index_document(str(path), text, cache_mode=cache_mode)
