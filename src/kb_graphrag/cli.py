"""Command-line interface for the KB GraphRAG retrieval engine.

Entry point: `kgr` command (defined in pyproject.toml).
"""

import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from kb_graphrag.config import Config

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler.

    Log records go to stderr so `search --json` output stays parseable.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _build_engine(ctx: click.Context):
    from kb_graphrag.query.adapter import InMemorySearchAdapter
    from kb_graphrag.query.engine import QueryEngine

    config = ctx.obj["config"]
    adapter_file = ctx.obj.get("adapter_file")
    adapter = InMemorySearchAdapter.from_json(adapter_file) if adapter_file else None
    return QueryEngine(config, adapter=adapter)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
@click.option(
    "--snapshot",
    type=click.Path(),
    default=None,
    help="Graph snapshot JSON (default: data/graph-data/knowledge-graph.json)",
)
@click.option(
    "--adapter-file",
    type=click.Path(exists=True),
    default=None,
    help="Serve search results from a JSON export instead of the search API",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, snapshot: str | None, adapter_file: str | None) -> None:
    """Knowledge-base GraphRAG retrieval engine."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    config = Config()
    if snapshot:
        config.graph_snapshot_path = Path(snapshot)
    ctx.obj["config"] = config
    ctx.obj["adapter_file"] = adapter_file


@main.command()
@click.argument("query")
@click.option(
    "--max-results", "-n", type=click.IntRange(min=0), default=None, help="Number of results (default: 20)"
)
@click.option("--depth", type=click.IntRange(min=0), default=None, help="Graph search depth (default: 3)")
@click.option("--no-graph-context", is_flag=True, help="Skip graph context enrichment")
@click.option(
    "--context-mode",
    type=click.Choice(["query", "document"]),
    default=None,
    help="Attach one query-wide graph context or one per document",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-source timeout in seconds",
)
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    max_results: int | None,
    depth: int | None,
    no_graph_context: bool,
    context_mode: str | None,
    timeout: float | None,
    as_json: bool,
) -> None:
    """Run a hybrid search."""
    config = ctx.obj["config"]
    options = config.default_search_options()
    if max_results is not None:
        options.max_results = max_results
    if depth is not None:
        options.graph_search_depth = depth
    if context_mode:
        options.graph_context_mode = context_mode
    if timeout is not None:
        options.source_timeout = timeout
    options.include_graph_context = not no_graph_context

    engine = _build_engine(ctx)
    try:
        response = engine.search_detailed(query, options)
    finally:
        engine.close()

    if as_json:
        click.echo(
            json.dumps(
                {
                    "query": query,
                    "results": [asdict(r) for r in response.results],
                    "failedSources": [s.value for s in response.failed_sources],
                    "totalOutage": response.total_outage,
                },
                ensure_ascii=False,
                indent=2,
            )
        )
        return

    if response.total_outage:
        console.print("[red]All search sources are unavailable, the empty result is not authoritative[/red]")
    elif response.partial_failure:
        failed = ", ".join(s.value for s in response.failed_sources)
        console.print(f"[yellow]Degraded search, no results from: {failed}[/yellow]")

    if not response.results:
        console.print("[yellow]No results.[/yellow]")
        return

    table = Table(title=f"Results for “{query}”")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Title")
    table.add_column("Sources")
    table.add_column("Space")
    for i, result in enumerate(response.results, 1):
        table.add_row(
            str(i),
            f"{result.score:.3f}",
            result.title,
            result.source,
            result.metadata.space_key,
        )
    console.print(table)

    context = response.results[0].graph_context
    if context and (context.related_functions or context.related_keywords):
        console.print(f"\n[cyan]Related functions:[/cyan] {', '.join(context.related_functions) or '-'}")
        console.print(f"[cyan]Related keywords:[/cyan]  {', '.join(context.related_keywords) or '-'}")


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show knowledge graph statistics."""
    from kb_graphrag.graph.index import GraphIndex

    config = ctx.obj["config"]
    index = GraphIndex.load(config.graph_snapshot_path)
    result = index.stats()

    if index.degraded:
        console.print(f"[yellow]Graph snapshot not available: {config.graph_snapshot_path}[/yellow]")

    console.print("[green]Knowledge graph:[/green]")
    console.print(f"  Nodes:               {result['totalNodes']}")
    console.print(f"  Edges:               {result['totalEdges']}")
    console.print(f"  Avg connections:     {result['averageConnections']:.2f}")
    if result["generatedAt"]:
        console.print(f"  Generated at:        {result['generatedAt']}")
    for node_type, count in sorted(result["nodeTypeDistribution"].items()):
        console.print(f"  {node_type:20s} {count}")


@main.command(name="related-pages")
@click.argument("function_name")
@click.pass_context
def related_pages(ctx: click.Context, function_name: str) -> None:
    """List pages related to a function."""
    engine = _build_engine(ctx)
    try:
        pages = engine.find_related_pages(function_name)
    finally:
        engine.close()

    if not pages:
        console.print("[yellow]No related pages found.[/yellow]")
        return
    for page in pages:
        console.print(f"  {page.page_id:12s} {page.name}")


@main.command(name="related-functions")
@click.argument("page_id")
@click.pass_context
def related_functions(ctx: click.Context, page_id: str) -> None:
    """List functions related to a page."""
    engine = _build_engine(ctx)
    try:
        functions = engine.find_related_functions(page_id)
    finally:
        engine.close()

    if not functions:
        console.print("[yellow]No related functions found.[/yellow]")
        return
    for function in functions:
        console.print(f"  {function.name}")


@main.command()
@click.argument("snapshot", type=click.Path(), required=False)
@click.pass_context
def validate(ctx: click.Context, snapshot: str | None) -> None:
    """Validate a graph snapshot against the node/edge vocabulary.

    Exits with status 1 when violations are found.
    """
    from kb_graphrag.graph.validation import SnapshotValidator

    path = Path(snapshot) if snapshot else ctx.obj["config"].graph_snapshot_path
    if not path.exists():
        console.print(f"[red]Error: Snapshot not found at {path}[/red]")
        sys.exit(1)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: {path.name} is not valid JSON ({e})[/red]")
        sys.exit(1)

    is_valid, violations = SnapshotValidator().validate(data)
    if is_valid:
        console.print(f"[green]Snapshot OK[/green] ({path})")
        return

    console.print(f"[red]{len(violations)} violations in {path}:[/red]")
    for violation in violations[:50]:
        console.print(f"  - {violation}")
    if len(violations) > 50:
        console.print(f"  ... and {len(violations) - 50} more")
    sys.exit(1)


@main.command()
@click.argument("query")
@click.pass_context
def evaluate(ctx: click.Context, query: str) -> None:
    """Run a search and score the quality of its results."""
    engine = _build_engine(ctx)
    try:
        results = engine.search(query)
        report = engine.evaluate_search_quality(query, results)
    finally:
        engine.close()

    console.print(f"[green]Search quality for “{query}” ({len(results)} results):[/green]")
    console.print(f"  Relevance:     {report.relevance_score:.3f}")
    console.print(f"  Diversity:     {report.diversity_score:.3f}")
    console.print(f"  Completeness:  {report.completeness_score:.3f}")
    console.print(f"  Overall:       {report.overall_score:.3f}")


if __name__ == "__main__":
    main()
