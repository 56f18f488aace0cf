"""Application configuration defaults."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from docchat.errors import ConfigError

DEFAULT_EMBED_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_LLM_MODEL = "gemini-2.5-flash"

LOGGER = logging.getLogger(__name__)


class CacheMode(str, enum.Enum):
    """How the embedding cache participates in a request."""

    OFF = "off"
    LOAD = "load"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: str | CacheMode | None) -> CacheMode:
        if value is None or value == "":
            return cls.AUTO
        if isinstance(value, cls):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(mode.value for mode in cls)
            raise ConfigError(f"Unknown cache mode {value!r} (expected one of: {choices})") from None


def _get_env(env: Mapping[str, str], key: str, default: str | None = None) -> str | None:
    value = env.get(key)
    if value is None or value == "":
        return default
    return value


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Ignoring non-integer %s=%r, using %d", key, value, default)
        return default


def load_env_files(*paths: str | Path) -> None:
    """Soft-load dotenv files; variables already in the environment win."""
    for path in paths or (".env", ".env.local"):
        if Path(path).is_file():
            load_dotenv(path, override=False)


@dataclass(slots=True)
class AppConfig:
    hf_api_key: str | None = None
    embed_model_name: str = DEFAULT_EMBED_MODEL
    embed_backend: str = "auto"
    embed_server_url: str | None = None
    embed_batch_size: int = 64
    cache_mode: CacheMode = CacheMode.AUTO
    cache_path: Path = Path("tmp/embeddings_cache.json")
    gemini_api_key: str | None = None
    llm_model_name: str = DEFAULT_LLM_MODEL
    vector_store: str = "chroma"
    chroma_host: str = "http://localhost:8000"
    collection_name: str = "rag_demo"
    data_dir: Path = Path("data")
    sentences_per_chunk: int = 2
    top_k: int = 5
    port: int = 8081

    def __post_init__(self) -> None:
        self.cache_mode = CacheMode.parse(self.cache_mode)
        self.cache_path = Path(self.cache_path)
        self.data_dir = Path(self.data_dir)

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "docchat.db"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> AppConfig:
        """Build a config from environment variables.

        When ``env`` is omitted, ``.env`` and ``.env.local`` are loaded first
        and ``os.environ`` is read.
        """
        if env is None:
            load_env_files()
            env = os.environ
        defaults = cls()
        return cls(
            hf_api_key=_get_env(env, "HF_API_KEY"),
            embed_model_name=_get_env(env, "EMBED_MODEL_NAME", defaults.embed_model_name),
            embed_backend=_get_env(env, "EMBED_BACKEND", defaults.embed_backend).lower(),
            embed_server_url=_get_env(env, "EMBED_SERVER_URL"),
            embed_batch_size=_get_int(env, "EMBED_BATCH_SIZE", defaults.embed_batch_size),
            cache_mode=CacheMode.parse(_get_env(env, "EMBED_CACHE_MODE")),
            cache_path=Path(_get_env(env, "EMBED_CACHE_PATH", str(defaults.cache_path))),
            gemini_api_key=_get_env(env, "GEMINI_API_KEY"),
            llm_model_name=_get_env(env, "LLM_MODEL_NAME", defaults.llm_model_name),
            vector_store=_get_env(env, "VECTOR_STORE", defaults.vector_store).lower(),
            chroma_host=_get_env(env, "CHROMA_DB_HOST", defaults.chroma_host),
            collection_name=_get_env(env, "COLLECTION_NAME", defaults.collection_name),
            data_dir=Path(_get_env(env, "RAG_DATA_DIR", str(defaults.data_dir))),
            sentences_per_chunk=_get_int(env, "SENTENCES_PER_CHUNK", defaults.sentences_per_chunk),
            top_k=_get_int(env, "TOP_K", defaults.top_k),
            port=_get_int(env, "PORT", defaults.port),
        )
