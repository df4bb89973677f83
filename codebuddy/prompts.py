from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .types import Observation, tool_args_to_dict

if TYPE_CHECKING:
    from .types import MemoryEntry

ARG_PREVIEW_CHARS = 200
SIMILARITY_PREVIEW_CHARS = 500

EXTRACTOR_IDENTITY = (
    "You are a knowledge extraction AI. Capture reusable project knowledge from a "
    "coding session: the information that helps rebuild or extend this project later."
)

KNOWLEDGE_FOCUS = """
Do not describe which tools ran or which files were touched. Extract the knowledge behind the work:
- What is being built (project type and purpose)
- Architecture and file structure
- Tech stack, libraries and frameworks
- Styling or UI approach (layout method, theming, animation)
- Key implementation patterns (data structures, algorithms, state handling)
- Design decisions and their reasons
""".strip()

ENTRY_RULES = """
Rules:
- Output 1-3 entries. Fewer is better. Output no entries if the session was trivial (only reading files).
- Each entry has: category, title (max 60 chars), summary (2-4 sentences), type, tags.
- "category" is one of "task" (what was built), "decision" (architecture or tech choice), "error" (bug and its fix), "pattern" (reusable approach).
- "type" is one of "feature", "decision", "pattern", "bugfix", "lesson", "note".
- The summary names concrete details: file names, function names, CSS properties, library APIs.
- Tags are domain-specific ("css-grid", "react-context"), never generic ("code-change").
- Entries of category "error" also carry "errorInfo": {"pattern": "...", "solution": "...", "prevention": "..."}.
""".strip()

MULTI_ENTRY_SCHEMA = (
    '{"intent": "task-execution", "entries": [{"category": "task", "title": "...", '
    '"summary": "...", "type": "feature", "tags": ["..."]}]}'
)

SINGLE_ENTRY_RULES = """
Produce a single memory entry:
1. Summary: 2-4 sentences of concrete knowledge (file names, function names, data structures).
2. Type: "feature", "decision", "pattern", "bugfix", "lesson" or "note".
3. Title (max 60 chars): the high-level project knowledge.
4. Tags: 3-5 domain-specific tags.
""".strip()

SINGLE_ENTRY_SCHEMA = (
    '{"intent": "task-execution", "title": "...", "summary": "...", "type": "...", "tags": ["..."]}'
)

MERGE_RULES = """
Rules:
- The title describes the actual work, e.g. "Snake game: canvas rendering with neon theme". Never generic text.
- The content keeps concrete details from both entries: file names, functions, properties.
- Do not repeat the word "merged" or any of these instructions in the output.
""".strip()


def _preview(value: Any, limit: int = ARG_PREVIEW_CHARS) -> str:
    if isinstance(value, str):
        return value[:limit]
    try:
        return json.dumps(value, ensure_ascii=False)[:limit]
    except (TypeError, ValueError):
        return str(value)[:limit]


def _clock(timestamp: str) -> str:
    # ISO timestamps: keep HH:MM:SS.
    if "T" in timestamp:
        return timestamp.split("T", 1)[1][:8]
    return timestamp


def format_observation(obs: Observation) -> str:
    args = {k: v for k, v in tool_args_to_dict(obs.args).items() if v not in (None, "")}
    line = f"[{_clock(obs.timestamp)}] {obs.tool}"
    if args:
        line += " (" + ", ".join(f"{k}: {_preview(v)}" for k, v in args.items()) + ")"
    if obs.result:
        line += f"\n  -> {obs.result}"
    if obs.has_error:
        line += " [ERROR]"
    return line


def format_observations(observations: Sequence[Observation]) -> str:
    return "\n".join(format_observation(obs) for obs in observations)


def _session_header(
    observations: Sequence[Observation],
    edited: Sequence[str],
    delegation: Sequence[str],
) -> list[str]:
    blocks = []
    if delegation:
        blocks.append("Delegated task context:\n" + "\n".join(delegation))
    blocks.append("Observations:\n" + format_observations(observations))
    if any(obs.has_error for obs in observations):
        blocks.append("Some observations contain errors.")
    if edited:
        blocks.append("Files edited: " + ", ".join(edited))
    return blocks


def build_extraction_prompt(
    observations: Sequence[Observation],
    edited: Sequence[str],
    delegation: Sequence[str] = (),
) -> str:
    blocks = [EXTRACTOR_IDENTITY]
    blocks.extend(_session_header(observations, edited, delegation))
    blocks.extend([KNOWLEDGE_FOCUS, ENTRY_RULES, "Respond ONLY with valid JSON:\n" + MULTI_ENTRY_SCHEMA])
    return "\n\n".join(blocks)


def build_summary_prompt(
    observations: Sequence[Observation],
    edited: Sequence[str],
    delegation: Sequence[str] = (),
) -> str:
    blocks = [EXTRACTOR_IDENTITY]
    blocks.extend(_session_header(observations, edited, delegation))
    blocks.extend(
        [KNOWLEDGE_FOCUS, SINGLE_ENTRY_RULES, "Respond ONLY with valid JSON:\n" + SINGLE_ENTRY_SCHEMA]
    )
    return "\n\n".join(blocks)


def build_similarity_prompt(text_a: str, text_b: str) -> str:
    return "\n\n".join(
        [
            "Compare these two texts and decide whether they are semantically similar "
            "(same topic and meaning).",
            f"TEXT 1:\n{text_a[:SIMILARITY_PREVIEW_CHARS]}",
            f"TEXT 2:\n{text_b[:SIMILARITY_PREVIEW_CHARS]}",
            'Respond in JSON only:\n{"similar": true/false, "score": 0.0-1.0, "reason": "brief explanation"}',
        ]
    )


def build_merge_prompt(existing: MemoryEntry, title: str, content: str) -> str:
    return "\n\n".join(
        [
            "Merge these two related memories into one concise entry. The title must be "
            "specific and at most 60 characters; the content combines the concrete details "
            "of both without repetition.",
            f"EXISTING:\nTitle: {existing.title}\nContent: {existing.content}",
            f"NEW:\nTitle: {title}\nContent: {content}",
            MERGE_RULES,
            'Respond with ONLY a JSON object with "title" and "content" keys.',
        ]
    )
