"""Typer CLI entry point for codemap."""

from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from codemap import __version__
from codemap.config import PROJECT_DIR_NAME, CodeMapConfig, load_config
from codemap.exceptions import CodeMapError
from codemap.service import CodeMapService, QueryResult

app = typer.Typer(
    name="codemap",
    help="codemap: index and search the symbols of a source tree.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_CONFIG_TEMPLATE = """\
# codemap project configuration
# debounce_seconds = 1.5
# sync_timeout = 30
# embeddings_enabled = true
# embedding_model = "all-MiniLM-L6-v2"
# scan_workers = 1
# extra_ignore = ["fixtures/**"]
"""


def _error_exit(message: str, hint: str | None = None) -> None:
    """Print a styled error and exit."""
    console.print(f"[bold red]Error:[/bold red] {message}")
    if hint:
        console.print(f"[dim]Hint: {hint}[/dim]")
    raise typer.Exit(code=1)


def _load(verbose: bool = False, no_embeddings: bool = False) -> CodeMapConfig:
    config = load_config(Path.cwd())
    if verbose:
        config.log_level = "DEBUG"
    if no_embeddings:
        config.embeddings_enabled = False
    return config


def _unwrap(result: QueryResult) -> Any:
    if not result.success:
        _error_exit(result.error or "Query failed")
    return result.data


def _format_time(epoch: float) -> str:
    if not epoch:
        return "-"
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


@app.command()
def init() -> None:
    """Create the .codemap/ directory for this project."""
    codemap_dir = Path.cwd().resolve() / PROJECT_DIR_NAME

    if codemap_dir.is_dir():
        console.print(f"[yellow]Already initialized:[/yellow] {PROJECT_DIR_NAME}/ exists at {codemap_dir}")
        raise typer.Exit(code=0)

    codemap_dir.mkdir(parents=True, exist_ok=True)
    (codemap_dir / "config.toml").write_text(_CONFIG_TEMPLATE, encoding="utf-8")
    (codemap_dir / ".gitignore").write_text("cache/\n", encoding="utf-8")

    console.print(Panel(
        Text.assemble(
            ("Initialized codemap in ", "green"),
            (str(codemap_dir), "bold green"),
            ("\n\nCreated:\n", "white"),
            ("  config.toml   ", "cyan"), ("- project settings\n", "dim"),
            ("  .gitignore    ", "cyan"), ("- ignores the index cache", "dim"),
        ),
        title="[bold green]Project Initialized[/bold green]",
        border_style="green",
    ))
    console.print("\n[dim]Next step:[/dim] run [cyan]codemap index[/cyan]\n")


@app.command()
def index(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
    no_embeddings: Annotated[
        bool, typer.Option("--no-embeddings", help="Skip the embedding model")
    ] = False,
) -> None:
    """Rebuild the index from scratch and save it."""
    try:
        service = CodeMapService(_load(verbose, no_embeddings))
        built = service.rebuild()
    except CodeMapError as exc:
        _error_exit(str(exc))
        return

    console.print(
        f"[green]Indexed[/green] [bold]{built.metadata.symbol_count}[/bold] symbols in "
        f"[bold]{built.metadata.file_count}[/bold] files -> {service.store.path}"
    )


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Text to search for")],
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="exact, fuzzy, semantic or combined")
    ] = "combined",
    kind: Annotated[
        list[str] | None, typer.Option("--kind", "-k", help="Restrict to a symbol kind (repeatable)")
    ] = None,
    exported_only: Annotated[
        bool, typer.Option("--exported-only", help="Only exported symbols")
    ] = False,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results")] = 10,
    no_embeddings: Annotated[
        bool, typer.Option("--no-embeddings", help="Skip the embedding model")
    ] = False,
) -> None:
    """Search indexed symbols."""
    try:
        service = CodeMapService(_load(no_embeddings=no_embeddings))
        service.start(watch=False)
        results = _unwrap(
            service.search(query, mode=mode, kinds=kind, exported_only=exported_only, limit=limit)
        )
    except CodeMapError as exc:
        _error_exit(str(exc))
        return

    if not results:
        console.print(f"[yellow]No matches for[/yellow] {query!r}")
        return

    table = Table(title=f"Results for {query!r}", border_style="cyan", header_style="bold cyan")
    table.add_column("Score", justify="right")
    table.add_column("Symbol", style="bold")
    table.add_column("Kind")
    table.add_column("Location")
    table.add_column("Match", style="dim")
    for r in results:
        table.add_row(
            f"{r['score']:.2f}",
            r["name"],
            r["kind"],
            f"{r['file']}:{r['start_line']}",
            r["match_reason"],
        )
    console.print(table)


@app.command()
def info(
    filepath: Annotated[str, typer.Argument(help="File to describe")],
) -> None:
    """Show the symbols, imports and exports of one file."""
    try:
        service = CodeMapService(_load(no_embeddings=True))
        service.start(watch=False)
        data = _unwrap(service.get_file_info(filepath))
    except CodeMapError as exc:
        _error_exit(str(exc))
        return

    table = Table(title=data["file"], border_style="cyan", header_style="bold cyan")
    table.add_column("Lines", justify="right")
    table.add_column("Symbol", style="bold")
    table.add_column("Kind")
    table.add_column("Exported")
    table.add_column("Signature", style="dim")
    for s in data["symbols"]:
        table.add_row(
            f"{s['start_line']}-{s['end_line']}",
            s["name"],
            s["kind"],
            "[green]yes[/green]" if s["exported"] else "no",
            s["signature"] or "",
        )
    console.print(table)

    if data["imports"]:
        console.print("\n[bold]Imports[/bold]")
        for edge in data["imports"]:
            names = ", ".join(edge["imported"]) or "-"
            console.print(f"  [cyan]{edge['source']}[/cyan] ({names})")


@app.command()
def imports(
    filepath: Annotated[str | None, typer.Option("--file", "-f", help="Show imports of this file")] = None,
    module: Annotated[str | None, typer.Option("--module", "-m", help="Find files importing this module")] = None,
    symbol: Annotated[
        str | None, typer.Option("--symbol", "-s", help="With --file: imports used by this symbol")
    ] = None,
) -> None:
    """Query the import graph."""
    try:
        service = CodeMapService(_load(no_embeddings=True))
        service.start(watch=False)
        data = _unwrap(service.query_imports(filepath, module, symbol))
    except CodeMapError as exc:
        _error_exit(str(exc))
        return

    groups = data if isinstance(data, list) else [data]
    table = Table(title="Imports", border_style="cyan", header_style="bold cyan")
    table.add_column("File", style="bold")
    table.add_column("Source", style="cyan")
    table.add_column("Imported")
    table.add_column("Used by", style="dim")
    for group in groups:
        for edge in group["imports"]:
            table.add_row(
                group["file"],
                edge["source"],
                ", ".join(edge["imported"]),
                ", ".join(edge["used_by"]),
            )
    console.print(table)


@app.command()
def watch(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
) -> None:
    """Keep the index current while files change (Ctrl-C to stop)."""
    try:
        service = CodeMapService(_load(verbose))
        service.start(watch=True)
    except CodeMapError as exc:
        _error_exit(str(exc))
        return

    console.print("[green]Watching[/green] for changes. Press Ctrl-C to stop.")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/yellow]")
    finally:
        service.stop()


@app.command()
def status() -> None:
    """Show configuration and persisted index stats."""
    try:
        config = load_config(Path.cwd())
        service = CodeMapService(config)
        stored = service.store.load()
    except CodeMapError as exc:
        _error_exit(str(exc))
        return

    table = Table(title=f"codemap v{__version__}", border_style="cyan", header_style="bold cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("Project", str(config.project_dir))
    table.add_row("Index", str(config.index_path))
    if stored is None:
        table.add_row("Status", "[dim]Not built[/dim]")
    else:
        meta = stored.metadata
        table.add_row("Schema", meta.schema_version)
        table.add_row("Built", _format_time(meta.built_at))
        table.add_row("Files", str(meta.file_count))
        table.add_row("Symbols", str(meta.symbol_count))
        missing = len(stored.missing_embeddings())
        table.add_row("Embeddings", f"{len(stored.embeddings) - missing} stored, {missing} pending")
    table.add_row(
        "Semantic search",
        f"[green]{config.embedding_model}[/green]" if config.embeddings_enabled else "[dim]Disabled[/dim]",
    )

    console.print()
    console.print(table)
    console.print()
