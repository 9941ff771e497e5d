"""Typer-based CLI for exploring a code property graph."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import load_settings
from .engine import ExplorerEngine
from .errors import ExplorerError
from .logging_setup import setup_logging

console = Console()

app = typer.Typer(
    help="🕸️  CPG Explorer: browse a precomputed code property graph.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

DB_OPTION = typer.Option(None, "--db", "-d", help="Path to the CPG SQLite database (default: $CPG_DB_PATH).")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"CPG Explorer v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """CPG Explorer: call graphs, package rollups, search and hotspots over a CPG database."""
    pass


def _open_engine(db: Optional[str]) -> ExplorerEngine:
    settings = load_settings(db_path=db)
    try:
        return ExplorerEngine.open(settings.db_path)
    except ExplorerError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)


def _fail(exc: ExplorerError) -> None:
    console.print(f"[red]Error:[/red] {escape(str(exc))}")
    raise typer.Exit(code=1)


@app.command("serve")
def serve(
    db: Optional[str] = DB_OPTION,
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind (default: $HOST or 127.0.0.1)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on (default: $PORT or 8080)."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-request deadline in seconds; 0 disables."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """🌐 Serve the JSON API over HTTP.

    Example:
      cpg-explorer serve --db ./cpg.db --port 5050
    """
    import uvicorn

    from .server import create_app

    settings = load_settings(db_path=db, host=host, port=port, request_timeout=timeout)
    setup_logging(settings.log_level, verbose=verbose)

    engine = _open_engine(settings.db_path)
    server_app = create_app(engine, settings)

    url = f"http://{settings.host}:{settings.port}"
    console.print(f"\n[bold green]🕸️  CPG Explorer API[/bold green]")
    console.print(f"   Database: [cyan]{escape(str(settings.db_path))}[/cyan]")
    console.print(f"   URL:      [link={url}]{url}[/link]")
    console.print(f"\n   [dim]Press Ctrl+C to stop the server[/dim]\n")

    try:
        uvicorn.run(server_app, host=settings.host, port=settings.port, log_level="warning")
    except KeyboardInterrupt:
        pass
    finally:
        engine.close()
        console.print("\n[dim]Server stopped.[/dim]")


@app.command("stats")
def stats(db: Optional[str] = DB_OPTION):
    """📊 Show node, edge, function, package and file counts."""
    with _open_engine(db) as engine:
        try:
            result = engine.stats()
        except ExplorerError as exc:
            _fail(exc)
        capabilities = engine.capabilities()

    table = Table(title="Graph statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    for key, value in result.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)

    missing = [name for name, available in capabilities.items() if not available]
    if missing:
        console.print(f"[dim]Optional tables unavailable: {', '.join(missing)}[/dim]")


@app.command("packages")
def packages(db: Optional[str] = DB_OPTION):
    """📦 List packages ordered by function count."""
    with _open_engine(db) as engine:
        try:
            result = engine.packages()
        except ExplorerError as exc:
            _fail(exc)

    if not result:
        console.print("No packages found.")
        return
    table = Table(title=f"Packages ({len(result)})")
    table.add_column("Package", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Functions", justify="right")
    for pkg in result:
        table.add_row(escape(pkg.name), str(pkg.file_count), str(pkg.func_count))
    console.print(table)


def _print_results(results, title: str) -> None:
    if not results:
        console.print("No matches.")
        return
    table = Table(title=title)
    table.add_column("Kind", style="magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Package")
    table.add_column("Location", style="dim")
    for r in results:
        location = escape(f"{r.file}:{r.line}") if r.file else ""
        table.add_row(escape(r.kind), escape(r.name), escape(r.package), location)
    console.print(table)


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Name substring to search for."),
    limit: int = typer.Option(0, "--limit", "-n", help="Maximum results (default 50)."),
    db: Optional[str] = DB_OPTION,
):
    """🔍 Search functions, types and methods by name."""
    with _open_engine(db) as engine:
        try:
            results = engine.search(query, limit)
        except ExplorerError as exc:
            _fail(exc)
    _print_results(results, f"Name matches for '{escape(query)}'")


@app.command("code-search")
def code_search(
    query: str = typer.Argument(..., help="Text to look for in source files."),
    limit: int = typer.Option(0, "--limit", "-n", help="Maximum results (default 30)."),
    db: Optional[str] = DB_OPTION,
):
    """📝 Search source text and list the functions of matching files."""
    with _open_engine(db) as engine:
        try:
            results = engine.code_search(query, limit)
        except ExplorerError as exc:
            _fail(exc)
    _print_results(results, f"Source matches for '{escape(query)}'")


@app.command("callgraph")
def callgraph(
    function_id: str = typer.Argument(..., help="Seed function id."),
    depth: int = typer.Option(2, "--depth", help="Levels to expand (1-5)."),
    direction: str = typer.Option("callees", "--direction", help="callees or callers."),
    db: Optional[str] = DB_OPTION,
):
    """🧭 Show the call graph around a function."""
    with _open_engine(db) as engine:
        try:
            graph = engine.call_graph(function_id, depth=depth, direction=direction)
        except ExplorerError as exc:
            _fail(exc)

    if not graph.nodes:
        console.print(f"[yellow]Function '{escape(function_id)}' not found.[/yellow]")
        return
    names = {n.id: escape(n.name) for n in graph.nodes}
    console.print(f"[bold]Nodes:[/bold] {len(graph.nodes)}  [bold]Edges:[/bold] {len(graph.edges)}")
    for edge in graph.edges:
        source = names.get(edge.source, f"[dim]{escape(edge.source)}[/dim]")
        target = names.get(edge.target, f"[dim]{escape(edge.target)}[/dim]")
        console.print(f"  {source} → {target}")


@app.command("hotspots")
def hotspots(
    limit: int = typer.Option(0, "--limit", "-n", help="Maximum results (default 20)."),
    db: Optional[str] = DB_OPTION,
):
    """🔥 Rank functions by complexity and coupling."""
    with _open_engine(db) as engine:
        try:
            result = engine.hotspots(limit)
        except ExplorerError as exc:
            _fail(exc)

    if not result:
        console.print("No hotspots available.")
        return
    table = Table(title="Hotspots")
    table.add_column("Score", justify="right", style="red")
    table.add_column("Function", style="cyan")
    table.add_column("Package")
    table.add_column("Complexity", justify="right")
    table.add_column("Fan-in", justify="right")
    table.add_column("Fan-out", justify="right")
    for h in result:
        table.add_row(str(h.score), escape(h.name), escape(h.package), str(h.complexity), str(h.fan_in), str(h.fan_out))
    console.print(table)


@app.command("findings")
def findings(
    function_id: str = typer.Argument(..., help="Function id."),
    db: Optional[str] = DB_OPTION,
):
    """⚠️  List findings for a function, most severe first."""
    with _open_engine(db) as engine:
        try:
            result = engine.findings(function_id)
        except ExplorerError as exc:
            _fail(exc)

    if not result:
        console.print("No findings.")
        return
    for f in result:
        console.print(f"[bold]{escape(f.severity.upper()):8}[/bold] \\[{escape(f.category)}] {escape(f.message)}")


@app.command("source")
def source(
    function_id: Optional[str] = typer.Argument(None, help="Function id."),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Show a file instead of a function's file."),
    db: Optional[str] = DB_OPTION,
):
    """📄 Print the source text of a function's file, or of a file path."""
    if not function_id and not file:
        raise typer.BadParameter("Pass a function id or --file.")
    with _open_engine(db) as engine:
        try:
            text = engine.source_for_file(file) if file else engine.source_for_function(function_id)
        except ExplorerError as exc:
            _fail(exc)

    if not text:
        console.print("[yellow]No source available.[/yellow]")
        return
    console.print(text, markup=False, highlight=False)


if __name__ == "__main__":
    app()
