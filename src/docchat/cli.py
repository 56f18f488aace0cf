"""Command line interface for DocChat."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from docchat.config import AppConfig, CacheMode
from docchat.errors import DocChatError
from docchat.services import build_services
from docchat.utils.files import read_text_document
from docchat.utils.text import chunk_document


console = Console()
app = typer.Typer(help="DocChat - chat with your text documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


@app.command()
def upload(
    path: Path = typer.Argument(..., help="Text document to index."),
    cache_mode: Optional[str] = typer.Option(
        None, "--cache-mode", help="Embedding cache mode: off, load or auto"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Chunk, embed and store a document."""
    _setup_logging(verbose)
    config = AppConfig.from_env()
    try:
        mode = CacheMode.parse(cache_mode) if cache_mode else config.cache_mode
        text = read_text_document(path)
        services = build_services(config, with_answerer=False)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except DocChatError as exc:
        _fail(str(exc))

    try:
        report = services.indexer.index_document(str(path), text, cache_mode=mode)
    except DocChatError as exc:
        _fail(str(exc))
    finally:
        services.close()

    console.print(
        f"OK: upserted {report.chunk_count} chunks into [bold]{report.collection}[/bold] "
        f"(cache: {report.cache_status})"
    )


@app.command()
def rechunk(
    path: Path = typer.Argument(..., help="Text document to chunk."),
    sentences: Optional[int] = typer.Option(
        None, "--sentences", help="Sentences per chunk (defaults to SENTENCES_PER_CHUNK)"
    ),
) -> None:
    """Show how a document is split into chunks, without embedding it."""
    if sentences is None:
        sentences = AppConfig.from_env().sentences_per_chunk
    try:
        passages = chunk_document(str(path), read_text_document(path), sentences)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except DocChatError as exc:
        _fail(str(exc))

    if not passages:
        console.print("[yellow]No text found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id")
    table.add_column("Text")
    for passage in passages:
        table.add_row(passage.id, passage.text)
    console.print(table)


@app.command()
def chat(
    query: str = typer.Argument(..., help="Question to answer"),
    context: Optional[str] = typer.Option(
        None, "--context", "-c", help="Document name to restrict retrieval to"
    ),
    show_context: bool = typer.Option(False, "--show-context", help="Print retrieved passages"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question from previously uploaded documents."""
    _setup_logging(verbose)
    config = AppConfig.from_env()
    try:
        services = build_services(config)
    except DocChatError as exc:
        _fail(str(exc))

    try:
        exchange = services.retriever.ask(context, query)
    except DocChatError as exc:
        _fail(str(exc))
    finally:
        services.close()

    if show_context:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("#")
        table.add_column("Passage")
        for rank, passage in enumerate(exchange.passages, start=1):
            table.add_row(str(rank), passage)
        console.print(table)
    console.print(exchange.answer)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: Optional[int] = typer.Option(None, help="Server port (defaults to PORT)"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from docchat.web.app import create_app

    config = AppConfig.from_env()
    port = port or config.port
    console.print(f"Starting DocChat API on http://{host}:{port}")
    uvicorn.run(create_app(config=config), host=host, port=port, reload=False, log_level="info")
