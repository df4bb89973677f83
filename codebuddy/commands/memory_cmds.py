from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timezone

import typer
from rich import print
from rich.markup import escape

from ..dedup import DedupEngine
from ..guides import find_guides
from ..oracle import OracleClient
from ..state import BuddyContext
from ..types import VALID_MEMORY_TYPES, CandidateEntry


def recent_cmd(
    *,
    context_factory: Callable[[], BuddyContext],
    limit: int,
    kind: str | None,
) -> None:
    """Show recent memories."""

    ctx = context_factory()
    entries = ctx.recent_memories(len(ctx.memories))
    if kind:
        entries = [entry for entry in entries if entry.type == kind]
    if not entries:
        print("No memories stored yet")
        return
    for entry in entries[:limit]:
        tags = f" [dim]{escape(', '.join(entry.tags))}[/dim]" if entry.tags else ""
        print(f"#{entry.id} ({entry.type}) [bold]{escape(entry.title)}[/bold]{tags}")
        print(f"{escape(entry.content)}\n")


def search_cmd(*, context_factory: Callable[[], BuddyContext], query: str, limit: int) -> None:
    """Search memories by word overlap."""

    ctx = context_factory()
    guides = find_guides(query, ctx.memories, ctx.config.guide_threshold, limit=limit)
    if not guides:
        print("No matching memories")
        return
    for guide in guides:
        entry = guide.entry
        print(f"#{entry.id} ({entry.type}) {escape(entry.title)} score={guide.score:.2f}")
        print(f"{escape(entry.content)}\n")


def add_cmd(
    *,
    context_factory: Callable[[], BuddyContext],
    title: str,
    content: str,
    kind: str,
    tags: list[str] | None,
    force: bool,
) -> None:
    """Add a memory through dedup."""

    if kind not in VALID_MEMORY_TYPES:
        allowed = ", ".join(VALID_MEMORY_TYPES)
        print(f"[red]code-buddy: invalid type '{escape(kind)}'. Allowed: {allowed}[/red]")
        raise typer.Exit(code=1)
    ctx = context_factory()
    candidate = CandidateEntry(type=kind, title=title, content=content, tags=list(tags or []))
    result = asyncio.run(DedupEngine(ctx).add_entry(candidate, force_save=force))
    print(escape(result.message))
    for entry in result.similar:
        print(f"  - #{entry.id} {escape(entry.title)}")
    if result.action == "skipped":
        raise typer.Exit(code=2)


def stats_cmd(*, context_factory: Callable[[], BuddyContext]) -> None:
    ctx = context_factory()
    by_type = Counter(entry.type for entry in ctx.memories)

    print("[bold]Memories[/bold]")
    print(f"- Data dir: {ctx.store.base_dir}")
    print(f"- Total: {len(ctx.memories)}")
    for kind in VALID_MEMORY_TYPES:
        if by_type[kind]:
            print(f"- {kind}: {by_type[kind]}")
    solutions = len(ctx.memories_by_category("solution"))
    knowledge = len(ctx.memories_by_category("knowledge"))
    print(f"- Solutions: {solutions}, knowledge: {knowledge}")
    print("\n[bold]Mistakes[/bold]")
    print(f"- Recorded: {len(ctx.mistakes)}")

    session = ctx.stats
    print("\n[bold]Session[/bold]")
    print(f"- Created: {session.memories_created}, merged: {session.memories_merged}")
    print(f"- Errors recorded: {session.errors_recorded}, flushes: {session.flushes}")
    last = datetime.fromtimestamp(session.last_activity, tz=timezone.utc)
    print(f"- Last activity: {last.isoformat(timespec='seconds')}")


def llm_test_cmd(*, client_factory: Callable[[], OracleClient]) -> None:
    """Send a short prompt to the configured provider."""

    client = client_factory()
    if not client.available():
        print("[yellow]No LLM provider configured; rule-based extraction only[/yellow]")
        raise typer.Exit(code=1)
    report = asyncio.run(client.test_connection())
    if report.get("ok"):
        print(
            f"[green]OK[/green] {client.label} in {report.get('latency_ms')}ms: "
            f"{report.get('reply')!r}"
        )
        return
    print(f"[red]FAILED[/red] {client.label}: {report.get('error')}")
    raise typer.Exit(code=1)
