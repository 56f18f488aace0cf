"""Tests for sentence splitting and chunking."""

from __future__ import annotations

import pytest

from docchat.errors import InputError
from docchat.models import Passage
from docchat.utils.text import chunk_document, split_sentences


class TestSplitSentences:
    """Test split_sentences function."""

    def test_restores_terminator(self) -> None:
        """Each sentence keeps its trailing period."""
        assert split_sentences("One. Two. Three.") == ["One.", "Two.", "Three."]

    def test_line_breaks_become_spaces(self) -> None:
        """CR and LF are normalized before splitting."""
        assert split_sentences("First\nline.\r\nSecond line.") == ["First line.", "Second line."]

    def test_consecutive_terminators_collapse(self) -> None:
        """Empty fragments between delimiters are dropped."""
        assert split_sentences("Wait... what.") == ["Wait.", "what."]

    def test_whitespace_only(self) -> None:
        assert split_sentences("  \n\t ") == []


class TestChunkDocument:
    """Test chunk_document function."""

    def test_groups_sentences(self) -> None:
        """Sentences are grouped in pairs with a trailing partial group."""
        passages = chunk_document("doc", "Hello world. This is a test. Bye now.", 2)

        assert passages == [
            Passage(id="doc-0", text="Hello world. This is a test."),
            Passage(id="doc-1", text="Bye now."),
        ]

    def test_empty_text(self) -> None:
        """Empty input yields no passages."""
        assert chunk_document("doc", "", 2) == []
        assert chunk_document("doc", "   \n  ", 2) == []

    def test_no_terminator(self) -> None:
        """Text without periods becomes a single passage."""
        passages = chunk_document("doc", "no sentence boundary here", 3)

        assert len(passages) == 1
        assert passages[0].id == "doc-0"
        assert passages[0].text.startswith("no sentence boundary here")

    def test_group_size_one(self) -> None:
        passages = chunk_document("notes.txt", "A. B. C.", 1)
        assert [p.id for p in passages] == ["notes.txt-0", "notes.txt-1", "notes.txt-2"]

    def test_group_larger_than_document(self) -> None:
        passages = chunk_document("doc", "A. B.", 10)
        assert passages == [Passage(id="doc-0", text="A. B.")]

    def test_invalid_group_size(self) -> None:
        with pytest.raises(InputError):
            chunk_document("doc", "A. B.", 0)

    @pytest.mark.parametrize("group_size", [1, 2, 3, 5])
    def test_sentences_preserved_in_order(self, group_size: int) -> None:
        """Every sentence appears exactly once, in the original order."""
        text = "Alpha one. Beta two.\nGamma three. Delta four. Epsilon five. Zeta six. Eta."
        expected = split_sentences(text)

        passages = chunk_document("doc", text, group_size)
        recovered = [s for p in passages for s in split_sentences(p.text)]

        assert recovered == expected
        assert all(len(split_sentences(p.text)) <= group_size for p in passages)

    def test_deterministic(self) -> None:
        """Re-chunking identical input yields identical ids and texts."""
        text = "One. Two. Three. Four. Five."
        assert chunk_document("doc", text, 2) == chunk_document("doc", text, 2)

    def test_ids_unique(self) -> None:
        passages = chunk_document("doc", "S. " * 50, 3)
        ids = [p.id for p in passages]
        assert len(ids) == len(set(ids)) == 17
