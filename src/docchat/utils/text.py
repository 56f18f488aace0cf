"""Text helpers including sentence-grouping chunking."""

from __future__ import annotations

from typing import List

from docchat.errors import InputError
from docchat.models import Passage

SENTENCE_TERMINATOR = "."


def split_sentences(text: str) -> List[str]:
    """Split text on the sentence terminator, keeping the terminator.

    Line breaks become spaces, fragments are trimmed and empty fragments
    (consecutive terminators) are dropped.
    """
    text = text.replace("\r", " ").replace("\n", " ").strip()
    if not text:
        return []
    sentences = []
    for fragment in text.split(SENTENCE_TERMINATOR):
        fragment = fragment.strip()
        if fragment:
            sentences.append(fragment + SENTENCE_TERMINATOR)
    return sentences


def chunk_document(document_id: str, text: str, sentences_per_passage: int = 2) -> List[Passage]:
    """Group consecutive sentences into passages with ids ``<document_id>-<n>``.

    A trailing group shorter than ``sentences_per_passage`` is still emitted.
    Empty or whitespace-only text returns an empty list.
    """
    if sentences_per_passage < 1:
        raise InputError(f"sentences_per_passage must be positive, got {sentences_per_passage}")

    sentences = split_sentences(text)
    passages: List[Passage] = []
    for ordinal, start in enumerate(range(0, len(sentences), sentences_per_passage)):
        group = sentences[start : start + sentences_per_passage]
        passages.append(Passage(id=f"{document_id}-{ordinal}", text=" ".join(group)))
    return passages
