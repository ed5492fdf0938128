"""
SEBI corpus CLI - ingestion and search from the command line
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sebi_corpus import __version__
from sebi_corpus.config import settings
from sebi_corpus.models.documents import (
    CorpusStats,
    DirectoryIngestionSummary,
    DocumentCategory,
    IngestionSummary,
    SearchFilters,
)
from sebi_corpus.models.exceptions import CorpusAPIException
from sebi_corpus.services import CorpusServices, build_services
from sebi_corpus.utils.logger import setup_logging

console = Console()

T = TypeVar("T")


def run_with_services(action: Callable[[CorpusServices], Awaitable[T]]) -> T:
    """Build services, run one async action, always close the store"""

    async def runner() -> T:
        services = build_services(settings)
        try:
            return await action(services)
        finally:
            await services.close()

    try:
        return asyncio.run(runner())
    except CorpusAPIException as e:
        raise click.ClickException(f"{e.error_code}: {e.message}") from e


def print_summary(summary: IngestionSummary) -> None:
    table = Table(title="Ingestion Summary")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Document", summary.document_key)
    table.add_row("Circular", summary.circular_id)
    table.add_row("Chunks", str(summary.chunk_count))
    table.add_row("Embeddings", str(summary.embedding_count))
    table.add_row("Elapsed (ms)", str(summary.elapsed_ms))

    console.print(table)


def print_directory_summary(summary: DirectoryIngestionSummary) -> None:
    console.print(
        f"[bold]{summary.total_files}[/bold] files: "
        f"[green]{summary.success_count} succeeded[/green], "
        f"[red]{summary.failure_count} failed[/red]"
    )

    if summary.failures:
        table = Table(title="Failures")
        table.add_column("File", style="red")
        table.add_column("Error")
        for failure in summary.failures:
            table.add_row(failure.file, failure.error)
        console.print(table)


def print_stats(stats: CorpusStats) -> None:
    table = Table(title="Corpus Statistics")
    table.add_column("Category", style="cyan")
    table.add_column("Chunks", justify="right")

    for category, count in stats.categories.items():
        table.add_row(category, str(count))
    table.add_row("[bold]Total[/bold]", f"[bold]{stats.total_chunks}[/bold]")

    console.print(table)
    console.print(f"Latest document date: {stats.latest_date or 'n/a'}")


@click.group()
@click.version_option(version=__version__)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines instead of console lines")
def cli(json_logs: bool):
    """SEBI corpus CLI - chunk, embed and search SEBI circulars"""
    setup_logging(settings.LOG_LEVEL, json_output=json_logs)


@cli.command("ingest-file")
@click.argument("pdf_path")
@click.option("--circular-id", default=None, help="Override the detected circular id")
@click.option(
    "--category",
    type=click.Choice([category.value for category in DocumentCategory]),
    default=None,
    help="Override the detected category",
)
def ingest_file(pdf_path: str, circular_id: Optional[str], category: Optional[str]):
    """Ingest a single PDF circular."""
    overrides = {key: value for key, value in {"circular_id": circular_id, "category": category}.items() if value}

    console.print(Panel.fit(f"[bold blue]Ingesting[/bold blue] {pdf_path}", title="SEBI Corpus"))
    summary = run_with_services(lambda services: services.ingestion.ingest_pdf(pdf_path, overrides or None))
    print_summary(summary)


@cli.command("ingest-dir")
@click.argument("dir_path")
def ingest_dir(dir_path: str):
    """Ingest every PDF under a directory tree."""
    console.print(Panel.fit(f"[bold blue]Ingesting directory[/bold blue] {dir_path}", title="SEBI Corpus"))
    summary = run_with_services(lambda services: services.ingestion.ingest_directory(dir_path))
    print_directory_summary(summary)

    if summary.failure_count:
        raise SystemExit(1)


@cli.command()
@click.argument("circular_id")
@click.argument("pdf_path")
def update(circular_id: str, pdf_path: str):
    """Replace a circular's chunks with a re-ingested PDF."""
    console.print(Panel.fit(f"[bold yellow]Updating[/bold yellow] {circular_id}", title="SEBI Corpus"))
    summary = run_with_services(lambda services: services.ingestion.update_corpus(circular_id, pdf_path))
    print_summary(summary)


@cli.command()
@click.option("--as-json", is_flag=True, help="Print raw JSON")
def stats(as_json: bool):
    """Show corpus statistics."""
    corpus_stats = run_with_services(lambda services: services.ingestion.get_corpus_stats())

    if as_json:
        console.print_json(corpus_stats.model_dump_json())
    else:
        print_stats(corpus_stats)


@cli.command()
@click.argument("query")
@click.option("--limit", "-k", default=5, show_default=True, help="Number of results")
@click.option("--category", type=click.Choice([category.value for category in DocumentCategory]), default=None)
@click.option("--chapter", default=None, help="Exact chapter label")
@click.option("--keyword-only", is_flag=True, help="BM25 only; no embedding call")
def search(query: str, limit: int, category: Optional[str], chapter: Optional[str], keyword_only: bool):
    """Hybrid search over the corpus."""
    filters = SearchFilters(category=category, chapter=chapter) if (category or chapter) else None

    async def action(services: CorpusServices):
        if keyword_only:
            return await services.retriever.keyword_search(query, limit, filters)
        query_vector = await services.embedder.embed_query(query)
        return await services.retriever.hybrid_search(query, query_vector, limit, filters)

    results = run_with_services(action)

    if not results:
        console.print("[yellow]No results[/yellow]")
        return

    for rank, result in enumerate(results, start=1):
        lineage = " > ".join(result.chunk.section_hierarchy) or "(no sections)"
        console.print(Panel(
            result.chunk.content[:800],
            title=f"#{rank} {result.document.circular_id}  score={result.score:.4f}",
            subtitle=f"{result.document.category.value} | {lineage}",
        ))

    console.print(f"[dim]{len(results)} results[/dim]")


if __name__ == "__main__":
    cli()
