"""Embedding backends.

Every backend turns a list of texts into float32 vectors through the same
batching loop; only the per-batch call differs. The backend is chosen once
by :func:`build_embedder` and never switched afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Sequence

import numpy as np
import requests

from docchat.config import DEFAULT_EMBED_MODEL
from docchat.errors import AlignmentError, ConfigError, UpstreamError
from docchat.models import EmbeddingSet, Passage

if TYPE_CHECKING:
    from docchat.config import AppConfig

HF_INFERENCE_ENDPOINT = "https://router.huggingface.co/hf-inference"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_EMBED_MODEL
    batch_size: int = 64
    normalize: bool = True
    pooling: str | None = None
    truncate: bool = True
    timeout: float = 60.0
    device: str | None = None


class BaseEmbedder:
    """Batching front end shared by all backends.

    Subclasses implement :meth:`_embed_batch`. A batch either returns exactly
    one vector per input or the whole call fails; no partial results are
    handed back.
    """

    backend_name = "base"

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        if self.config.batch_size < 1:
            raise ConfigError(f"batch_size must be positive, got {self.config.batch_size}")

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def _embed_batch(self, texts: list[str]) -> Any:
        raise NotImplementedError

    def embed_texts(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return a ``(len(texts), dim)`` float32 matrix."""
        sentences = list(texts)
        if not sentences:
            return np.empty((0, 0), dtype="float32")

        batch_size = self.config.batch_size
        parts: list[np.ndarray] = []
        dimension: int | None = None
        for start in range(0, len(sentences), batch_size):
            batch = sentences[start : start + batch_size]
            vectors = _as_matrix(self._embed_batch(batch), self.backend_name)
            if vectors.shape[0] != len(batch):
                raise AlignmentError(
                    f"{self.backend_name} returned {vectors.shape[0]} embeddings "
                    f"for a batch of {len(batch)} inputs"
                )
            if dimension is None:
                dimension = vectors.shape[1]
            elif vectors.shape[1] != dimension:
                raise AlignmentError(
                    f"{self.backend_name} returned {vectors.shape[1]}-dimensional embeddings, "
                    f"expected {dimension}"
                )
            parts.append(vectors)
            logger.debug(
                "Embedded batch %d-%d of %d via %s",
                start,
                start + len(batch),
                len(sentences),
                self.backend_name,
            )
        return np.vstack(parts)

    def embed(self, passages: Sequence[Passage]) -> EmbeddingSet:
        """Embed passages, keyed by passage id."""
        passages = list(passages)
        vectors = self.embed_texts([passage.text for passage in passages])
        return {passage.id: vector for passage, vector in zip(passages, vectors)}

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed_texts([text])[0]

    def close(self) -> None:
        pass


def _as_matrix(payload: Any, backend: str) -> np.ndarray:
    try:
        vectors = np.asarray(payload, dtype="float32")
    except (TypeError, ValueError) as exc:
        raise UpstreamError(f"{backend} returned a malformed embedding payload") from exc
    if vectors.ndim != 2:
        raise UpstreamError(
            f"{backend} returned embeddings of shape {vectors.shape}; "
            "expected one pooled vector per input"
        )
    return vectors


class _HTTPEmbedder(BaseEmbedder):
    def __init__(self, config: EmbeddingConfig | None = None, *, session: requests.Session | None = None) -> None:
        super().__init__(config)
        self._session = session or requests.Session()

    def _post(self, url: str, payload: dict) -> Any:
        try:
            response = self._session.post(url, json=payload, timeout=self.config.timeout)
        except requests.RequestException as exc:
            raise UpstreamError(f"{self.backend_name} request failed: {exc}") from exc
        if not response.ok:
            raise UpstreamError(
                f"{self.backend_name} returned HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"{self.backend_name} returned invalid JSON") from exc

    def close(self) -> None:
        self._session.close()


class HuggingFaceEmbedder(_HTTPEmbedder):
    """Hosted Hugging Face feature-extraction inference endpoint."""

    backend_name = "huggingface"

    def __init__(
        self,
        api_key: str,
        config: EmbeddingConfig | None = None,
        *,
        endpoint: str = HF_INFERENCE_ENDPOINT,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ConfigError("HF_API_KEY is required for the Hugging Face embedding backend")
        super().__init__(config, session=session)
        self.url = f"{endpoint.rstrip('/')}/models/{self.config.model_name}/pipeline/feature-extraction"
        self._session.headers["Authorization"] = f"Bearer {api_key}"

    def _embed_batch(self, texts: list[str]) -> Any:
        payload: dict[str, Any] = {
            "inputs": texts,
            "normalize": self.config.normalize,
            "truncate": self.config.truncate,
            "options": {"wait_for_model": True},
        }
        if self.config.pooling:
            payload["pooling"] = self.config.pooling
        return self._post(self.url, payload)


class TEIEmbedder(_HTTPEmbedder):
    """Self-hosted text-embeddings-inference server (``POST /embed``)."""

    backend_name = "tei"

    def __init__(
        self,
        base_url: str,
        config: EmbeddingConfig | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ConfigError("EMBED_SERVER_URL is required for the TEI embedding backend")
        super().__init__(config, session=session)
        self.url = f"{base_url.rstrip('/')}/embed"

    def _embed_batch(self, texts: list[str]) -> Any:
        return self._post(
            self.url,
            {"inputs": texts, "normalize": self.config.normalize, "truncate": self.config.truncate},
        )


class LocalEmbedder(BaseEmbedder):
    """In-process `SentenceTransformer` model for offline runs."""

    backend_name = "local"

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        super().__init__(config)
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info("Loaded local embedding model %s (dim=%d)", self.config.model_name, self.dimension)

    def _embed_batch(self, texts: list[str]) -> np.ndarray:
        return self._model.encode(
            texts,
            batch_size=len(texts),
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )


def resolve_backend(config: AppConfig) -> str:
    """Pick the embedding backend from the available configuration."""
    backend = config.embed_backend
    if backend == "auto":
        if config.embed_server_url:
            return "tei"
        if config.hf_api_key:
            return "huggingface"
        return "local"
    if backend in {"hf", "huggingface"}:
        return "huggingface"
    if backend in {"tei", "local"}:
        return backend
    raise ConfigError(f"Unknown embedding backend {backend!r}")


def build_embedder(config: AppConfig) -> BaseEmbedder:
    embedding_config = EmbeddingConfig(
        model_name=config.embed_model_name,
        batch_size=config.embed_batch_size,
    )
    backend = resolve_backend(config)
    logger.info("Using %s embedding backend with model %s", backend, config.embed_model_name)
    if backend == "huggingface":
        return HuggingFaceEmbedder(config.hf_api_key or "", embedding_config)
    if backend == "tei":
        return TEIEmbedder(config.embed_server_url or "", embedding_config)
    return LocalEmbedder(embedding_config)
