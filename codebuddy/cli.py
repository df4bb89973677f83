from __future__ import annotations

import typer

from . import __version__
from .commands.memory_cmds import add_cmd, llm_test_cmd, recent_cmd, search_cmd, stats_cmd
from .commands.serve_cmds import serve_cmd
from .config import load_config
from .host import create_context
from .logs import configure_logging
from .oracle import OracleClient
from .state import BuddyContext, NullOracle

app = typer.Typer(help="code-buddy: learns from coding sessions and recalls what it learned")


def _context(data_dir: str | None, *, use_oracle: bool = True) -> BuddyContext:
    cfg = load_config()
    if data_dir:
        cfg.data_dir = data_dir
    return create_context(cfg, oracle=None if use_oracle else NullOracle())


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Print version and exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    if version:
        print(__version__)
        raise typer.Exit()
    configure_logging(load_config().plugin_log, verbose=verbose)
    if ctx.invoked_subcommand is None:
        print(ctx.get_help())


@app.command()
def serve(
    data_dir: str = typer.Option(None, help="Directory holding memory.json and mistakes.json"),
) -> None:
    """Read host events as JSON lines on stdin and answer on stdout."""
    serve_cmd(context_factory=lambda: _context(data_dir))


@app.command()
def recent(
    limit: int = typer.Option(5, help="Max results"),
    kind: str | None = typer.Option(None, help="Filter by memory type"),
    data_dir: str = typer.Option(None, help="Directory holding memory.json and mistakes.json"),
) -> None:
    """Show recent memories."""
    recent_cmd(
        context_factory=lambda: _context(data_dir, use_oracle=False),
        limit=limit,
        kind=kind,
    )


@app.command()
def search(
    query: str,
    limit: int = typer.Option(5, help="Max results"),
    data_dir: str = typer.Option(None, help="Directory holding memory.json and mistakes.json"),
) -> None:
    """Search memories by word overlap."""
    search_cmd(
        context_factory=lambda: _context(data_dir, use_oracle=False),
        query=query,
        limit=limit,
    )


@app.command()
def add(
    title: str,
    content: str,
    kind: str = typer.Option("note", "--type", help="Memory type"),
    tags: list[str] = typer.Option(None, "--tag", help="Repeat for multiple tags"),
    force: bool = typer.Option(False, help="Save even when similar memories exist"),
    data_dir: str = typer.Option(None, help="Directory holding memory.json and mistakes.json"),
) -> None:
    """Manually add a memory, checking for duplicates first."""
    add_cmd(
        context_factory=lambda: _context(data_dir),
        title=title,
        content=content,
        kind=kind,
        tags=tags,
        force=force,
    )


@app.command()
def stats(
    data_dir: str = typer.Option(None, help="Directory holding memory.json and mistakes.json"),
) -> None:
    """Show memory and mistake counts."""
    stats_cmd(context_factory=lambda: _context(data_dir, use_oracle=False))


@app.command("llm-test")
def llm_test() -> None:
    """Check connectivity to the configured LLM provider."""

    llm_test_cmd(client_factory=lambda: OracleClient(load_config()))
