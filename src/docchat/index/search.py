"""Retrieval-augmented question answering."""

from __future__ import annotations

import logging
from typing import List, Protocol

from docchat.embedding.encoder import BaseEmbedder
from docchat.errors import InputError
from docchat.index.storage import VectorStore
from docchat.models import ChatExchange, Collection, QueryHit

PROMPT_TEMPLATE = (
    "Context:\n{context}\n\n"
    "Question: {query}\n\n"
    "Based on the context above, generate a succinct answer."
)

LOGGER = logging.getLogger(__name__)


class Answerer(Protocol):
    def generate(self, prompt: str) -> str: ...


def build_prompt(passages: List[str], query: str) -> str:
    return PROMPT_TEMPLATE.format(context="\n".join(passages), query=query)


class Retriever:
    """High-level API: embed a question, fetch passages, ask the answerer."""

    def __init__(
        self,
        embedder: BaseEmbedder,
        store: VectorStore,
        collection: Collection,
        answerer: Answerer,
        *,
        top_k: int = 5,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.collection = collection
        self.answerer = answerer
        self.top_k = top_k

    def retrieve(self, document_name: str | None, query: str, *, top_k: int | None = None) -> List[QueryHit]:
        """Return passages of ``document_name`` nearest to ``query``, store order.

        ``document_name=None`` searches the whole collection.
        """
        query = query.strip()
        if not query:
            raise InputError("Empty query")
        vector = self.embedder.embed_query(query)
        where = {"context": document_name} if document_name else None
        return self.store.query(
            self.collection,
            vector,
            top_k=self.top_k if top_k is None else top_k,
            where=where,
        )

    def ask(self, document_name: str | None, query: str) -> ChatExchange:
        hits = self.retrieve(document_name, query)
        passages = [hit.document for hit in hits]
        LOGGER.info("Retrieved %d passages for %r", len(passages), document_name)
        answer = self.answerer.generate(build_prompt(passages, query.strip()))
        return ChatExchange(query=query, passages=passages, answer=answer)
