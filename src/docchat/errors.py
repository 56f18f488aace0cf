"""Exception hierarchy shared by the indexing and retrieval pipeline."""

from __future__ import annotations


class DocChatError(Exception):
    """Base class for all DocChat errors."""


class InputError(DocChatError, ValueError):
    """Invalid caller input: empty document, bad parameters, unknown document."""


class ConfigError(DocChatError, ValueError):
    """Configuration is incomplete or inconsistent."""


class AlignmentError(DocChatError):
    """Passages, embeddings and metadata disagree in count, ids or dimension."""


class UpstreamError(DocChatError):
    """A remote collaborator (embedding backend, vector store, LLM) failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CacheError(DocChatError):
    """The embedding cache file could not be read, parsed or written."""


class CacheMismatchError(CacheError):
    """The cache file holds embeddings for a different key."""

    def __init__(self, expected: str, found: str) -> None:
        super().__init__(f"cached embeddings belong to key {found!r}, expected {expected!r}")
        self.expected = expected
        self.found = found


class CacheMissError(CacheError, InputError):
    """No cache file exists while cached embeddings are mandatory."""

    def __init__(self, key: str) -> None:
        super().__init__(
            f"no cached embeddings found for key {key!r} "
            "(set EMBED_CACHE_MODE=auto to generate them once)"
        )
        self.key = key
