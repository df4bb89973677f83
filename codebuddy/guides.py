from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath

from .classifier import is_edit_tool, is_write_tool
from .events import ToolStarting, parse_tool_args
from .similarity import overlap_coefficient
from .state import BuddyContext
from .types import EditArgs, MemoryEntry, Observation, WriteArgs

logger = logging.getLogger(__name__)

DEFAULT_GUIDE_LIMIT = 3
QUERY_IDENTIFIER_LIMIT = 12
RECENT_WRITE_LIMIT = 3

_IDENTIFIER_RE = re.compile(
    r"(?:function|def|class|const|let|var)\s+([A-Za-z_][A-Za-z0-9_]*)"
    r"|<title>([^<]+)</title>"
)


@dataclass(frozen=True)
class Guide:
    entry: MemoryEntry
    score: float


def _document(entry: MemoryEntry) -> str:
    return " ".join([entry.title, entry.content, " ".join(entry.tags)])


def find_guides(
    query: str,
    memories: Sequence[MemoryEntry],
    threshold: float = 0.15,
    limit: int = DEFAULT_GUIDE_LIMIT,
) -> list[Guide]:
    """Stored entries relevant to a short query, best first.

    Scores with the overlap coefficient so a handful of query words can
    match a long stored entry.
    """
    if not query.strip():
        return []
    scored = [Guide(entry, overlap_coefficient(query, _document(entry))) for entry in memories]
    relevant = [guide for guide in scored if guide.score >= threshold]
    relevant.sort(key=lambda guide: guide.score, reverse=True)
    return relevant[:limit]


def _identifiers(content: str) -> list[str]:
    found: list[str] = []
    for match in _IDENTIFIER_RE.finditer(content):
        name = (match.group(1) or match.group(2) or "").strip()
        if name and name not in found:
            found.append(name)
        if len(found) >= QUERY_IDENTIFIER_LIMIT:
            break
    return found


def build_guide_query(
    file_path: str | None,
    content: str,
    recent: Sequence[Observation] = (),
) -> str:
    parts: list[str] = []
    if file_path:
        parts.append(PurePosixPath(file_path).name)
    parts.extend(_identifiers(content))
    writes = [obs for obs in recent if obs.is_write_action and obs.file_edited]
    for obs in writes[-RECENT_WRITE_LIMIT:]:
        name = PurePosixPath(obs.file_edited or "").name
        if name and name not in parts:
            parts.append(name)
    return " ".join(parts)


def guides_for_tool(ctx: BuddyContext, event: ToolStarting) -> list[Guide]:
    if not (is_write_tool(event.tool) or is_edit_tool(event.tool)):
        return []
    args = parse_tool_args(event.tool, event.args)
    if isinstance(args, WriteArgs):
        file_path, content = args.file_path, args.content
    elif isinstance(args, EditArgs):
        file_path, content = args.file_path, args.new_string
    else:
        return []
    query = build_guide_query(file_path, content, ctx.buffer.aggregate())
    guides = find_guides(query, ctx.memories, ctx.config.guide_threshold)
    if guides:
        logger.info("surfacing guides", extra={"count": len(guides), "file": file_path})
    return guides


def render_guides(guides: Sequence[Guide]) -> str:
    lines = ["## Code Buddy Guides"]
    for guide in guides:
        lines.append(f"- [{guide.entry.type}] {guide.entry.title}: {guide.entry.content[:200]}")
    return "\n".join(lines)


def build_compaction_context(ctx: BuddyContext) -> str | None:
    memories = ctx.recent_memories(5)
    mistakes = ctx.recent_mistakes(3)
    if not memories and not mistakes:
        return None
    block = ["## Code Buddy Context (Auto-Injected)", ""]
    if memories:
        block.append("### Recent Memories")
        block.extend(f"- [{m.type}] {m.title}: {m.content[:80]}" for m in memories)
        block.append("")
    if mistakes:
        block.append("### Known Issues (Avoid Repeating)")
        block.extend(f"- {m.action} -> Solution: {m.correct_method[:80]}" for m in mistakes)
        block.append("")
    block.append("Use `code-buddy search` to recall more details if needed.")
    logger.info(
        "injected compaction context",
        extra={"memories": len(memories), "mistakes": len(mistakes)},
    )
    return "\n".join(block)
