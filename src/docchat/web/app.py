"""FastAPI application exposing upload, chat and rechunk endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from docchat.config import AppConfig
from docchat.errors import ConfigError, DocChatError, InputError, UpstreamError
from docchat.services import Services, build_services
from docchat.utils.files import read_text_document
from docchat.utils.text import chunk_document

LOGGER = logging.getLogger(__name__)


class DocumentPayload(BaseModel):
    path: Path | None = None
    name: str | None = None
    text: str | None = None
    cache_mode: str | None = None


class ChatPayload(BaseModel):
    context: str
    query: str


class ChunkOut(BaseModel):
    id: str
    text: str


class ChatResponse(BaseModel):
    answer: str
    context: List[str]


def _status_for(exc: DocChatError) -> int:
    if isinstance(exc, (InputError, ConfigError)):
        return 400
    if isinstance(exc, UpstreamError):
        return 502
    return 500


def _load_document(payload: DocumentPayload) -> tuple[str, str]:
    """Return ``(document name, text)`` from a path or inline payload."""
    if payload.path is not None:
        try:
            text = read_text_document(payload.path)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return str(payload.path), text
    if payload.name and payload.text is not None:
        return payload.name, payload.text
    raise HTTPException(status_code=400, detail="expected {path} or {name, text}")


def create_app(*, config: AppConfig | None = None, services: Services | None = None) -> FastAPI:
    """Build the API.

    With ``services`` the app uses them as-is; otherwise they are built from
    ``config`` (or the environment) when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        if app.state.services is None:
            app.state.services = build_services(config or AppConfig.from_env())
        yield
        if services is None:
            app.state.services.close()

    app = FastAPI(title="DocChat", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(DocChatError)
    async def docchat_error_handler(request: Request, exc: DocChatError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    def _services() -> Services:
        if app.state.services is None:
            raise HTTPException(status_code=503, detail="Service not initialised")
        return app.state.services

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        return "OK"

    @app.post("/upload")
    def upload(payload: DocumentPayload) -> dict[str, Any]:
        name, text = _load_document(payload)
        report = _services().indexer.index_document(name, text, cache_mode=payload.cache_mode)
        return {
            "status": "ok",
            "document": report.document,
            "chunks": report.chunk_count,
            "cache": report.cache_status,
        }

    @app.post("/chat", response_model=ChatResponse)
    def chat(payload: ChatPayload) -> ChatResponse:
        if not payload.query.strip() or not payload.context.strip():
            raise HTTPException(status_code=400, detail="expected {context, query}")
        retriever = _services().retriever
        if retriever is None:
            raise HTTPException(status_code=503, detail="Answer generation is not configured")
        exchange = retriever.ask(payload.context, payload.query)
        return ChatResponse(answer=exchange.answer, context=exchange.passages)

    @app.post("/rechunk")
    def rechunk(payload: DocumentPayload) -> dict[str, List[ChunkOut]]:
        name, text = _load_document(payload)
        settings = app.state.services.config if app.state.services else (config or AppConfig())
        passages = chunk_document(name, text, settings.sentences_per_chunk)
        return {"chunks": [ChunkOut(id=p.id, text=p.text) for p in passages]}

    return app
