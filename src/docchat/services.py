"""Wiring of the pipeline's collaborators from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docchat.config import AppConfig
from docchat.embedding.cache import EmbeddingCache
from docchat.embedding.encoder import BaseEmbedder, build_embedder
from docchat.errors import ConfigError
from docchat.generation.gemini import GeminiAnswerer
from docchat.index.chroma import ChromaVectorStore
from docchat.index.indexer import Indexer
from docchat.index.search import Answerer, Retriever
from docchat.index.storage import SQLiteVectorStore, VectorStore
from docchat.models import Collection

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    config: AppConfig
    embedder: BaseEmbedder
    store: VectorStore
    collection: Collection
    indexer: Indexer
    retriever: Retriever | None = None

    def close(self) -> None:
        self.embedder.close()
        self.store.close()


def build_store(config: AppConfig) -> VectorStore:
    if config.vector_store == "chroma":
        return ChromaVectorStore.from_url(config.chroma_host)
    if config.vector_store == "sqlite":
        return SQLiteVectorStore(config.sqlite_path)
    raise ConfigError(f"Unknown vector store {config.vector_store!r}")


def build_services(
    config: AppConfig,
    *,
    with_answerer: bool = True,
    answerer: Answerer | None = None,
) -> Services:
    """Create every collaborator and initialise the collection once.

    The collection handle is resolved here, before any request runs, and
    shared by the indexer and the retriever.
    """
    embedder = build_embedder(config)
    try:
        store = build_store(config)
    except Exception:
        embedder.close()
        raise
    try:
        collection = store.get_or_create_collection(config.collection_name)
        LOGGER.info("Using collection %s (%s)", collection.name, collection.id)

        indexer = Indexer(
            embedder,
            store,
            collection,
            cache=EmbeddingCache(config.cache_path),
            cache_mode=config.cache_mode,
            sentences_per_chunk=config.sentences_per_chunk,
        )
        retriever = None
        if with_answerer or answerer is not None:
            if answerer is None:
                answerer = GeminiAnswerer(config.gemini_api_key, config.llm_model_name)
            retriever = Retriever(embedder, store, collection, answerer, top_k=config.top_k)
    except Exception:
        embedder.close()
        store.close()
        raise
    return Services(
        config=config,
        embedder=embedder,
        store=store,
        collection=collection,
        indexer=indexer,
        retriever=retriever,
    )
