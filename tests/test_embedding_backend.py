"""Tests for embedding backends and backend selection."""

from __future__ import annotations

from unittest.mock import MagicMock, Mock, patch

import numpy as np
import pytest
import requests

from docchat.config import AppConfig
from docchat.embedding.encoder import (
    BaseEmbedder,
    EmbeddingConfig,
    HuggingFaceEmbedder,
    LocalEmbedder,
    TEIEmbedder,
    build_embedder,
    resolve_backend,
)
from docchat.errors import AlignmentError, ConfigError, UpstreamError
from docchat.models import Passage


def _response(payload: object, status: int = 200) -> Mock:
    response = Mock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.text = "error body" if status >= 300 else ""
    response.json.return_value = payload
    return response


def _echo_session(dimension: int = 3) -> Mock:
    """Session whose POST returns one vector per input."""
    session = Mock()
    session.headers = {}

    def post(url, json, timeout):
        return _response([[float(i)] * dimension for i, _ in enumerate(json["inputs"])])

    session.post.side_effect = post
    return session


class FakeEmbedder(BaseEmbedder):
    backend_name = "fake"

    def __init__(self, batches: list, config: EmbeddingConfig | None = None) -> None:
        super().__init__(config)
        self.batches = list(batches)
        self.calls: list[list[str]] = []

    def _embed_batch(self, texts):
        self.calls.append(list(texts))
        return self.batches.pop(0)


class TestEmbeddingConfig:
    """Test EmbeddingConfig dataclass."""

    def test_default_config(self) -> None:
        config = EmbeddingConfig()
        assert config.model_name == "sentence-transformers/all-MiniLM-L6-v2"
        assert config.batch_size == 64
        assert config.normalize is True
        assert config.pooling is None

    def test_invalid_batch_size(self) -> None:
        with pytest.raises(ConfigError):
            FakeEmbedder([], EmbeddingConfig(batch_size=0))


class TestBatching:
    """Test the shared batching loop."""

    def test_splits_into_batches(self) -> None:
        embedder = FakeEmbedder(
            [np.ones((2, 4)), np.ones((2, 4)), np.ones((1, 4))],
            EmbeddingConfig(batch_size=2),
        )

        vectors = embedder.embed_texts(["a", "b", "c", "d", "e"])

        assert vectors.shape == (5, 4)
        assert vectors.dtype == np.float32
        assert embedder.calls == [["a", "b"], ["c", "d"], ["e"]]

    def test_empty_input(self) -> None:
        embedder = FakeEmbedder([])
        assert embedder.embed_texts([]).shape[0] == 0
        assert embedder.embed([]) == {}
        assert embedder.calls == []

    def test_count_mismatch(self) -> None:
        """A backend that drops inputs fails the whole call."""
        embedder = FakeEmbedder([np.ones((1, 3))])

        with pytest.raises(AlignmentError):
            embedder.embed_texts(["a", "b"])

    def test_dimension_mismatch_between_batches(self) -> None:
        embedder = FakeEmbedder([np.ones((1, 3)), np.ones((1, 4))], EmbeddingConfig(batch_size=1))

        with pytest.raises(AlignmentError):
            embedder.embed_texts(["a", "b"])

    def test_token_level_output_rejected(self) -> None:
        embedder = FakeEmbedder([np.ones((2, 5, 3))])

        with pytest.raises(UpstreamError):
            embedder.embed_texts(["a", "b"])

    def test_ragged_output_rejected(self) -> None:
        embedder = FakeEmbedder([[[1.0, 2.0], [3.0]]])

        with pytest.raises(UpstreamError):
            embedder.embed_texts(["a", "b"])

    def test_embed_keys_by_passage_id(self) -> None:
        embedder = FakeEmbedder([np.array([[1.0, 0.0], [0.0, 1.0]])])
        passages = [Passage("doc-0", "A."), Passage("doc-1", "B.")]

        result = embedder.embed(passages)

        assert list(result) == ["doc-0", "doc-1"]
        np.testing.assert_array_equal(result["doc-1"], [0.0, 1.0])

    def test_embed_query_is_single_batch(self) -> None:
        embedder = FakeEmbedder([np.array([[0.5, 0.5]])])

        vector = embedder.embed_query("question?")

        assert vector.shape == (2,)
        assert embedder.calls == [["question?"]]


class TestHuggingFaceEmbedder:
    """Test the hosted feature-extraction backend."""

    def test_requires_api_key(self) -> None:
        with pytest.raises(ConfigError):
            HuggingFaceEmbedder("", session=Mock())

    def test_request_shape(self) -> None:
        session = _echo_session()
        embedder = HuggingFaceEmbedder(
            "hf_secret",
            EmbeddingConfig(model_name="org/model", pooling="mean"),
            endpoint="https://hf.example/",
            session=session,
        )

        vectors = embedder.embed_texts(["x", "y"])

        assert vectors.shape == (2, 3)
        assert session.headers["Authorization"] == "Bearer hf_secret"
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "https://hf.example/models/org/model/pipeline/feature-extraction"
        assert payload["inputs"] == ["x", "y"]
        assert payload["normalize"] is True
        assert payload["pooling"] == "mean"

    def test_http_error(self) -> None:
        session = Mock()
        session.headers = {}
        session.post.return_value = _response({"error": "nope"}, status=503)
        embedder = HuggingFaceEmbedder("key", session=session)

        with pytest.raises(UpstreamError) as excinfo:
            embedder.embed_texts(["x"])

        assert excinfo.value.status_code == 503
        assert "503" in str(excinfo.value)

    def test_connection_error(self) -> None:
        session = Mock()
        session.headers = {}
        session.post.side_effect = requests.ConnectionError("refused")
        embedder = HuggingFaceEmbedder("key", session=session)

        with pytest.raises(UpstreamError):
            embedder.embed_texts(["x"])

    def test_invalid_json(self) -> None:
        session = Mock()
        session.headers = {}
        response = _response(None)
        response.json.side_effect = ValueError("no json")
        session.post.return_value = response
        embedder = HuggingFaceEmbedder("key", session=session)

        with pytest.raises(UpstreamError):
            embedder.embed_texts(["x"])

    def test_failure_in_later_batch_fails_call(self) -> None:
        session = Mock()
        session.headers = {}
        session.post.side_effect = [
            _response([[1.0, 2.0]]),
            _response({"error": "overloaded"}, status=429),
        ]
        embedder = HuggingFaceEmbedder("key", EmbeddingConfig(batch_size=1), session=session)

        with pytest.raises(UpstreamError):
            embedder.embed([Passage("d-0", "A."), Passage("d-1", "B.")])


class TestTEIEmbedder:
    """Test the self-hosted embedding server backend."""

    def test_requires_url(self) -> None:
        with pytest.raises(ConfigError):
            TEIEmbedder("", session=Mock())

    def test_request_shape(self) -> None:
        session = _echo_session(dimension=2)
        embedder = TEIEmbedder("http://tei:8080/", EmbeddingConfig(batch_size=2), session=session)

        result = embedder.embed([Passage("d-0", "A."), Passage("d-1", "B."), Passage("d-2", "C.")])

        assert list(result) == ["d-0", "d-1", "d-2"]
        assert session.post.call_count == 2
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "http://tei:8080/embed"
        assert payload == {"inputs": ["C."], "normalize": True, "truncate": True}

    def test_close(self) -> None:
        session = _echo_session()
        TEIEmbedder("http://tei", session=session).close()
        session.close.assert_called_once()


class TestLocalEmbedder:
    """Test the in-process sentence-transformers backend."""

    @patch("sentence_transformers.SentenceTransformer")
    def test_encode(self, mock_model_class: MagicMock) -> None:
        model = mock_model_class.return_value
        model.get_sentence_embedding_dimension.return_value = 4
        model.encode.return_value = np.ones((2, 4), dtype="float64")

        embedder = LocalEmbedder(EmbeddingConfig(model_name="tiny"))
        vectors = embedder.embed_texts(["a", "b"])

        assert embedder.dimension == 4
        assert vectors.dtype == np.float32
        mock_model_class.assert_called_once_with("tiny", device=None)
        assert model.encode.call_args.kwargs["normalize_embeddings"] is True


class TestBackendSelection:
    """Test resolve_backend and build_embedder."""

    def test_auto_prefers_server(self) -> None:
        config = AppConfig(embed_server_url="http://tei", hf_api_key="key")
        assert resolve_backend(config) == "tei"

    def test_auto_hf_with_key(self) -> None:
        assert resolve_backend(AppConfig(hf_api_key="key")) == "huggingface"

    def test_auto_local_fallback(self) -> None:
        assert resolve_backend(AppConfig()) == "local"

    def test_explicit_alias(self) -> None:
        assert resolve_backend(AppConfig(embed_backend="hf", hf_api_key="key")) == "huggingface"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ConfigError):
            resolve_backend(AppConfig(embed_backend="magic"))

    def test_build_tei(self) -> None:
        embedder = build_embedder(AppConfig(embed_server_url="http://tei", embed_batch_size=8))
        assert isinstance(embedder, TEIEmbedder)
        assert embedder.config.batch_size == 8

    def test_build_hf_without_key(self) -> None:
        with pytest.raises(ConfigError):
            build_embedder(AppConfig(embed_backend="huggingface"))
