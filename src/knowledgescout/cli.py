"""Command line interface for KnowledgeScout."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from knowledgescout.config import AppConfig
from knowledgescout.errors import KnowledgeScoutError, NotFoundError, ValidationError
from knowledgescout.ingestion.loader import load_document
from knowledgescout.services import Services, build_services
from knowledgescout.utils.files import iter_document_paths


console = Console()
app = typer.Typer(help="KnowledgeScout - ask questions about your documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(db: Optional[Path]) -> AppConfig:
    config = AppConfig.from_env()
    if db is not None:
        config.db_path = db
    return config


def _open_services(db: Optional[Path]) -> Services:
    return build_services(_load_config(db), base_dir=Path.cwd())


@app.command()
def ingest(
    inputs: List[Path] = typer.Argument(
        ..., help="PDF, TXT or MD files (or folders) to add.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Add documents and index them."""
    _setup_logging(verbose)
    paths = list(iter_document_paths(inputs))
    if not paths:
        console.print("[yellow]No supported documents found.[/yellow]")
        return

    services = _open_services(db)
    indexed = failed = 0
    try:
        for path in paths:
            loaded = load_document(path)
            document = services.store.create_document(
                loaded.title, loaded.content, filename=path.name
            )
            try:
                report = services.pipeline.index_document(document.id)
            except KnowledgeScoutError as exc:
                console.print(f"[red]Failed[/red] {path.name}: {exc}")
                failed += 1
                continue
            console.print(
                f"Indexed [bold]{path.name}[/bold] as {document.id} "
                f"({report.chunk_count} chunks, {report.failed_chunks} failed)"
            )
            indexed += 1
    finally:
        services.close()

    console.print(f"Indexed: {indexed}, failed: {failed}")


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to answer"),
    k: int = typer.Option(5, "--k", help="Number of chunks to retrieve"),
    document: Optional[str] = typer.Option(None, "--document", help="Restrict to one document id"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question from the indexed documents."""
    _setup_logging(verbose)
    services = _open_services(db)
    try:
        result = services.answerer.answer(query, k=k, document_id=document)
    except (ValidationError, NotFoundError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    except KnowledgeScoutError as exc:
        console.print(f"[red]Could not answer:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        services.close()

    console.print(result.answer)
    if not result.sources:
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Relevance")
    table.add_column("Document")
    table.add_column("Chunk")
    table.add_column("Snippet")
    for source in result.sources:
        table.add_row(
            f"{source.relevance_score:.2f}",
            source.document_title,
            str(source.position),
            source.content.replace("\n", " "),
        )
    console.print(table)


@app.command()
def stats(db: Path = typer.Option(None, "--db", help="SQLite database path")) -> None:
    """Show index statistics."""
    services = _open_services(db)
    try:
        overview = services.store.get_overview()
    finally:
        services.close()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric")
    table.add_column("Value")
    for key, value in overview.to_dict().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@app.command()
def rebuild(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Re-index every document that is not indexed."""
    _setup_logging(verbose)
    services = _open_services(db)
    try:
        scheduled = services.queue.rebuild()
        if scheduled == 0:
            console.print("No documents need reindexing.")
            return
        console.print(f"Re-indexing {scheduled} documents...")
        services.queue.wait()
        overview = services.store.get_overview()
    finally:
        services.close()
    console.print(
        f"Indexed documents: {overview.indexed_documents}/{overview.total_documents}"
    )


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document id"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete a document and its chunks."""
    services = _open_services(db)
    try:
        deleted = services.store.delete_document(document_id)
        if deleted:
            services.cache.invalidate_document(document_id)
    finally:
        services.close()

    if not deleted:
        console.print(f"[yellow]Document {document_id} not found.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Deleted document {document_id}.")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from knowledgescout.web.app import app as web_app

    console.print(f"Starting KnowledgeScout API on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")


if __name__ == "__main__":
    app()
