"""CLI for context-engine."""

import json
import logging
from pathlib import Path

import click

from .related.git_history import GitError
from .retrieval.errors import ContextError
from .vector.embedder import DEFAULT_MODEL

DEFAULT_DB = "data/context.db"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Context Engine - hybrid code search and related-info discovery."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open(db: Path, model: str):
    from .vector.embedder import Embedder
    from .vector.store import DocumentStore

    embedder = Embedder(model)
    store = DocumentStore(db, dimensions=embedder.dimensions)
    return embedder, store


@cli.command()
@click.argument("root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--db", "-d", type=click.Path(path_type=Path), default=DEFAULT_DB)
@click.option("--model", default=DEFAULT_MODEL, help="sentence-transformers model")
@click.option("--window", type=int, default=60, help="Lines per chunk")
@click.option("--overlap", type=int, default=10, help="Lines shared by adjacent chunks")
@click.option("--clear", is_flag=True, help="Drop existing documents first")
def index(root: Path, db: Path, model: str, window: int, overlap: int, clear: bool):
    """Index every text file under ROOT."""
    from .vector.indexer import CorpusIndexer

    embedder, store = _open(db, model)
    if clear:
        store.clear()

    click.echo(f"Indexing: {root} -> {db}")
    indexer = CorpusIndexer(embedder, store, window=window, overlap=overlap)
    stats = indexer.index_directory(root)

    click.echo("\nIndex Complete!")
    click.echo(f"Files:   {stats['processed']}")
    click.echo(f"Chunks:  {stats['chunks']}")
    click.echo(f"Errors:  {stats['errors']}")
    click.echo(f"Total:   {store.count()} documents")

    if stats["errors"] > 0:
        click.echo("\nError Details:")
        for err in stats["error_details"]:
            click.echo(f"  - {err}")


@cli.command()
@click.argument("query", type=str)
@click.option("--db", "-d", type=click.Path(path_type=Path), default=DEFAULT_DB)
@click.option("--model", default=DEFAULT_MODEL, help="sentence-transformers model")
@click.option("--limit", "-n", type=int, default=10, help="Number of results")
@click.option("--offset", type=int, default=0, help="Results to skip")
@click.option("--source-type", "source_types", multiple=True, help="Restrict source types")
@click.option("--active-file", default="", help="File currently being edited")
@click.option("--branch", default="", help="Current git branch")
@click.option("--ticket", "tickets", multiple=True, help="Open ticket IDs")
@click.option("--json", "as_json", is_flag=True, help="Print the raw response")
def search(
    query: str,
    db: Path,
    model: str,
    limit: int,
    offset: int,
    source_types: tuple[str, ...],
    active_file: str,
    branch: str,
    tickets: tuple[str, ...],
    as_json: bool,
):
    """Hybrid search over the indexed corpus."""
    from .retrieval.pipeline import HybridRetriever
    from .retrieval.types import SearchFilters, WorkContext

    embedder, store = _open(db, model)
    work_context = None
    if active_file or branch or tickets:
        work_context = WorkContext(
            active_file=active_file, git_branch=branch, open_ticket_ids=tickets
        )
    filters = SearchFilters(source_types=source_types) if source_types else None

    try:
        response = HybridRetriever(embedder, store).search(
            query,
            top_k=limit,
            offset=offset,
            filters=filters,
            work_context=work_context,
        )
    except ContextError as exc:
        raise SystemExit(str(exc))

    if as_json:
        click.echo(json.dumps(response.to_dict(), indent=2, default=str))
        return

    click.echo(
        f"Found {len(response.results)} of {response.total_count} "
        f"({response.query_time_ms:.1f} ms):\n"
    )
    for i, r in enumerate(response.results, response.offset + 1):
        info = r.document.info
        location = info.file_path or r.document.id
        if info.start_line:
            location = f"{location}:{info.start_line}-{info.end_line}"
        click.echo(f"{i}. [{r.score:.3f}] {location} ({info.source_type})")
        preview = r.document.content.strip().splitlines()[:2]
        for line in preview:
            click.echo(f"   {line[:120]}")
        click.echo()
    if response.has_more:
        click.echo(f"More results: --offset {response.offset + len(response.results)}")


@cli.command()
@click.option("--file", "file_path", default=None, help="Indexed file path")
@click.option("--ticket", "ticket_id", default=None, help="Ticket ID, e.g. PROJ-123")
@click.option("--db", "-d", type=click.Path(path_type=Path), default=DEFAULT_DB)
@click.option("--model", default=DEFAULT_MODEL, help="sentence-transformers model")
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Repository to mine (default: current directory)",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw response")
def related(
    file_path: str | None,
    ticket_id: str | None,
    db: Path,
    model: str,
    repo: Path | None,
    as_json: bool,
):
    """Show information related to a file or a ticket."""
    from .related.aggregator import RelatedInfoAggregator

    if not file_path and not ticket_id:
        raise click.UsageError("Pass --file or --ticket")

    embedder, store = _open(db, model)
    aggregator = RelatedInfoAggregator(embedder, store, repo_path=repo)

    try:
        response = aggregator.get_related_info(file_path=file_path, ticket_id=ticket_id)
    except (ContextError, GitError) as exc:
        raise SystemExit(str(exc))

    if as_json:
        click.echo(json.dumps(response.to_dict(), indent=2, default=str))
        return

    click.echo(response.summary)
    if response.related_prs:
        click.echo(f"\nPRs: {', '.join(response.related_prs)}")
    if response.related_issues:
        click.echo(f"Issues: {', '.join(response.related_issues)}")
    for discussion in response.discussions:
        click.echo(f"[{discussion.channel} {discussion.timestamp}] {discussion.summary}")

    if response.related_items:
        click.echo(f"\nItems ({len(response.related_items)}):")
    for item in response.related_items:
        relation = item.relation_type.value or "unknown"
        click.echo(f"  [{item.score:.2f}] {relation:<14} {item.file_path or item.id}")


@cli.command("mcp-server")
@click.option(
    "--db",
    "-d",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB,
    envvar="CONTEXT_DB",
    help="Document store path",
)
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    envvar="CONTEXT_REPO_PATH",
    help="Repository mined for ticket history",
)
@click.option(
    "--model",
    default=DEFAULT_MODEL,
    envvar="CONTEXT_EMBEDDING_MODEL",
    help="sentence-transformers model",
)
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse"]),
    default="stdio",
    help="Transport type",
)
def mcp_server(db: Path, repo: Path | None, model: str, transport: str):
    """Run the Context Engine MCP server.

    Exposes context.search and context.get_related_info as MCP tools.
    """
    from .mcp.server import init_server, run

    # stdout belongs to the stdio transport
    click.echo(f"Opening document store: {db}", err=True)

    init_server(
        db_path=str(db),
        repo_path=str(repo) if repo else None,
        embedding_model=model,
    )

    click.echo(f"Starting MCP server ({transport} transport)...", err=True)
    run(transport)


if __name__ == "__main__":
    cli()
