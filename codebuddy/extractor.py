from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from .analyzer import Analysis, analyze, read_for_analysis, sort_insights
from .buffer import BufferSnapshot
from .classifier import ERROR_OUTPUT_RE, classify_intent, detect_session_type, edited_files
from .dedup import DedupEngine
from .oracle import OracleError, extract_json
from .prompts import build_extraction_prompt, build_summary_prompt
from .state import BuddyContext
from .types import (
    CandidateEntry,
    DedupResult,
    EditArgs,
    ErrorInfo,
    MemoryEntry,
    MistakeRecord,
    Observation,
    ReadArgs,
    SearchArgs,
    SessionType,
    ShellArgs,
    WriteArgs,
    generate_id,
    now_iso,
    truncate_title,
    union_tags,
)

logger = logging.getLogger(__name__)

MAX_ENTRIES = 4
MAX_FALLBACK_TAGS = 5
MIN_FALLBACK_TAGS = 3
MAX_SUMMARY_INSIGHTS = 8

EXTENSION_TAGS = {
    "ts": "typescript",
    "tsx": "react",
    "js": "javascript",
    "jsx": "react",
    "css": "css",
    "scss": "styling",
    "html": "html",
    "py": "python",
    "go": "golang",
    "rs": "rust",
    "json": "config",
    "yaml": "config",
    "yml": "config",
    "toml": "config",
    "sql": "database",
    "md": "docs",
    "vue": "vue",
    "svelte": "svelte",
}

DIRECTORY_TAGS = {
    "components": "ui-components",
    "pages": "pages",
    "api": "api",
    "hooks": "react-hooks",
    "utils": "utilities",
    "lib": "library",
    "tests": "testing",
    "test": "testing",
    "__tests__": "testing",
    "styles": "styling",
    "models": "data-model",
    "services": "services",
    "middleware": "middleware",
    "routes": "routing",
    "store": "state-mgmt",
    "plugins": "plugins",
    "public": "assets",
}

COMMAND_TAGS = (
    (("npm", "yarn", "pnpm", "pip"), "package-mgmt"),
    (("test", "jest", "vitest", "pytest"), "testing"),
    (("build", "compile"), "build"),
    (("lint", "eslint", "prettier", "ruff"), "linting"),
    (("git",), "git"),
    (("docker",), "docker"),
)

# Title verb and memory type per session kind for the exit-time path.
SYNC_TEMPLATES: dict[str, tuple[str, str]] = {
    "build": ("Build", "feature"),
    "enhance": ("Enhance", "feature"),
    "debug": ("Fix", "bugfix"),
}

Analyze = Callable[[str, str], Analysis]


def short_name(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).stem


def _tagify(value: str) -> str:
    return re.sub(r"[^a-z0-9-]", "-", value.lower()).strip("-")


def describe_observation(obs: Observation) -> str | None:
    args = obs.args
    if isinstance(args, ShellArgs) and args.command:
        command = args.command.split("&&")[0].split("|")[0].strip()
        return truncate_title(command)
    path = obs.file_edited
    if isinstance(args, (EditArgs, WriteArgs, ReadArgs)) and args.file_path:
        path = path or args.file_path
    if path:
        tool = obs.tool.lower()
        if "read" in tool:
            verb = "Read"
        elif "write" in tool:
            verb = "Wrote"
        elif "edit" in tool:
            verb = "Edited"
        elif "glob" in tool:
            verb = "Searched"
        else:
            verb = "Touched"
        return f"{verb} {PurePosixPath(path).name}"
    if isinstance(args, SearchArgs) and args.pattern:
        return f'Searched for "{args.pattern[:40]}"'
    return None


def infer_tags(observations: Sequence[Observation], edited: Sequence[str]) -> list[str]:
    tags: list[str] = []

    def add(tag: str) -> None:
        if tag and tag not in tags:
            tags.append(tag)

    for path in edited:
        parts = [part for part in path.replace("\\", "/").split("/") if part]
        if not parts:
            continue
        ext = parts[-1].rsplit(".", 1)[-1].lower() if "." in parts[-1] else ""
        add(EXTENSION_TAGS.get(ext, ""))
        for directory in parts[:-1]:
            add(DIRECTORY_TAGS.get(directory.lower(), ""))

    for obs in observations:
        if not isinstance(obs.args, ShellArgs):
            continue
        command = obs.args.command.lower()
        for needles, tag in COMMAND_TAGS:
            if any(needle in command for needle in needles):
                add(tag)
    return tags[:MAX_FALLBACK_TAGS]


def _latest_content(observations: Sequence[Observation], path: str) -> str:
    for obs in reversed(observations):
        if obs.file_edited != path:
            continue
        if isinstance(obs.args, WriteArgs):
            return obs.args.content
        if isinstance(obs.args, EditArgs):
            return obs.args.new_string
    return ""


def collect_insights(
    observations: Sequence[Observation],
    edited: Sequence[str],
    analyze_fn: Analyze = analyze,
) -> tuple[list[str], list[str]]:
    lines: list[str] = []
    tags: list[str] = []
    for path in edited:
        contents = read_for_analysis(path, fallback=_latest_content(observations, path))
        result = analyze_fn(path, contents)
        for line in result.lines:
            if line not in lines:
                lines.append(line)
        for tag in result.tags:
            if tag not in tags:
                tags.append(tag)
    return sort_insights(lines), tags


def first_error(observations: Sequence[Observation]) -> tuple[str, str] | None:
    for obs in observations:
        if not obs.has_error:
            continue
        where = short_name(obs.file_edited) if obs.file_edited else obs.tool
        for line in obs.result.splitlines():
            if ERROR_OUTPUT_RE.search(line):
                return line.strip()[:200], where
        return (describe_observation(obs) or obs.result.strip())[:200], where
    return None


def build_fallback_entries(
    observations: Sequence[Observation],
    analyze_fn: Analyze = analyze,
) -> list[CandidateEntry]:
    """Rule-based entries for when the oracle is unreachable or unhelpful."""
    edited = edited_files(observations)
    intent = classify_intent(observations)
    actions: list[str] = []
    for obs in observations:
        desc = describe_observation(obs)
        if desc and desc not in actions:
            actions.append(desc)

    names = [name for name in (short_name(path) for path in edited) if name]
    insights, analyzer_tags = collect_insights(observations, edited, analyze_fn)

    if names:
        if intent.name == "debugging":
            verb = "Debug"
        elif intent.name == "refactoring":
            verb = "Refactor"
        elif len(names) >= 3:
            verb = "Update"
        else:
            verb = "Work on"
        shown = ", ".join(names[:2])
        title = f"{verb} {shown}" if len(names) <= 2 else f"{verb} {shown} +{len(names) - 2} more"
        if insights:
            summary = ". ".join(insights[:MAX_SUMMARY_INSIGHTS]) + "."
        elif actions:
            summary = f"{'. '.join(actions[:4])}. Edited {len(edited)} file(s)."
        else:
            listed = ", ".join(PurePosixPath(p).name for p in edited)
            summary = f"Edited {len(edited)} file(s): {listed}"
    elif actions:
        title = actions[0]
        summary = ". ".join(actions[:3])
    else:
        tools = list(dict.fromkeys(obs.tool for obs in observations))
        title = f"Session activity ({', '.join(tools[:2])})"
        summary = f"Performed {len(observations)} operations using {', '.join(tools)}"

    tags = union_tags(infer_tags(observations, edited), analyzer_tags, limit=MAX_FALLBACK_TAGS + 1)
    for name in names:
        if len(tags) >= MIN_FALLBACK_TAGS:
            break
        tags = union_tags(tags, [_tagify(name)])

    entries = [
        CandidateEntry(
            type=intent.type,
            title=title,
            content=summary,
            tags=tags,
            category="error" if intent.name == "debugging" else "task",
        )
    ]

    error = first_error(observations)
    if error and intent.name != "debugging":
        line, where = error
        entries.append(
            CandidateEntry(
                type="bugfix",
                title=f"Error in {where}",
                content=f"{line} (in {where})",
                tags=[_tagify(where)] if _tagify(where) else [],
                category="error",
            )
        )
    return entries


def build_sync_entries(
    observations: Sequence[Observation],
    analyze_fn: Analyze = analyze,
) -> tuple[SessionType, list[CandidateEntry]]:
    """Fallback entries with the title and type picked by session kind."""
    session_type = detect_session_type(observations)
    verb, memory_type = SYNC_TEMPLATES[session_type]
    entries = build_fallback_entries(observations, analyze_fn)
    primary = entries[0]
    names = [name for name in (short_name(path) for path in edited_files(observations)) if name]
    if names:
        shown = ", ".join(names[:2])
        extra = f" +{len(names) - 2} more" if len(names) > 2 else ""
        primary.title = truncate_title(f"{verb} {shown}{extra}")
    if primary.category != "error":
        primary.type = memory_type
    primary.tags = union_tags(primary.tags, [f"{session_type}-session"])
    return session_type, entries


def _coerce_candidate(raw: Any) -> CandidateEntry | None:
    if not isinstance(raw, dict):
        return None
    title = raw.get("title")
    summary = raw.get("summary") or raw.get("content")
    if not isinstance(title, str) or not title.strip():
        return None
    if not isinstance(summary, str) or not summary.strip():
        return None
    tags = raw.get("tags")
    category = raw.get("category")
    error_info = raw.get("errorInfo")
    return CandidateEntry(
        type=raw.get("type") if isinstance(raw.get("type"), str) else "note",
        title=title,
        content=summary.strip(),
        tags=[str(tag) for tag in tags if str(tag).strip()] if isinstance(tags, list) else [],
        category=category if isinstance(category, str) and category else "task",
        error_info=ErrorInfo(
            pattern=str(error_info.get("pattern") or ""),
            solution=str(error_info.get("solution") or ""),
            prevention=str(error_info.get("prevention") or ""),
        )
        if isinstance(error_info, dict)
        else None,
    )


def parse_entries(reply: str | None) -> tuple[str, list[CandidateEntry]]:
    """Read an `{intent, entries}` wrapper, a bare array or a single entry."""
    parsed = extract_json(reply)
    intent = "unknown"
    raw_entries: list[Any] = []
    if isinstance(parsed, dict):
        if isinstance(parsed.get("intent"), str):
            intent = parsed["intent"]
        if isinstance(parsed.get("entries"), list):
            raw_entries = parsed["entries"]
        else:
            raw_entries = [parsed]
    elif isinstance(parsed, list):
        raw_entries = parsed
    entries = [entry for entry in map(_coerce_candidate, raw_entries) if entry is not None]
    return intent, entries


@dataclass
class ExtractionReport:
    intent: str
    used_fallback: bool
    results: list[DedupResult] = field(default_factory=list)
    mistakes: list[MistakeRecord] = field(default_factory=list)


class KnowledgeExtractor:
    def __init__(
        self,
        ctx: BuddyContext,
        dedup: DedupEngine | None = None,
        analyze_fn: Analyze = analyze,
    ) -> None:
        self.ctx = ctx
        self.dedup = dedup or DedupEngine(ctx)
        self.analyze_fn = analyze_fn

    async def _ask_oracle(self, snapshot: BufferSnapshot) -> tuple[str, list[CandidateEntry]]:
        if not self.ctx.oracle_available():
            return "unknown", []
        observations = snapshot.observations
        edited = edited_files(observations)
        if self.ctx.config.full_auto:
            prompt = build_extraction_prompt(observations, edited, snapshot.delegation_contexts)
        else:
            prompt = build_summary_prompt(observations, edited, snapshot.delegation_contexts)
        try:
            reply = await self.ctx.oracle.ask(prompt)
        except OracleError as exc:
            logger.warning("knowledge extraction call failed, using rules", exc_info=exc)
            return "unknown", []
        intent, entries = parse_entries(reply)
        if not entries:
            logger.info("oracle returned no usable entries, using rules")
        return intent, entries

    async def extract(self, snapshot: BufferSnapshot) -> ExtractionReport:
        observations = snapshot.observations
        intent, candidates = await self._ask_oracle(snapshot)
        used_fallback = not candidates
        if used_fallback:
            intent = classify_intent(observations).name
            candidates = build_fallback_entries(observations, self.analyze_fn)
        if not self.ctx.config.full_auto:
            candidates = candidates[:1]
        logger.info(
            "extracting knowledge",
            extra={"intent": intent, "entries": len(candidates), "fallback": used_fallback},
        )

        report = ExtractionReport(intent=intent, used_fallback=used_fallback)
        for candidate in candidates[:MAX_ENTRIES]:
            candidate.tags = union_tags(
                candidate.tags, ["auto-observed", f"auto-{candidate.category}"]
            )
            report.results.append(await self.dedup.add_entry(candidate))
            mistake = self.record_mistake(candidate)
            if mistake is not None:
                report.mistakes.append(mistake)
        return report

    def record_mistake(self, candidate: CandidateEntry) -> MistakeRecord | None:
        if candidate.category != "error" or candidate.error_info is None:
            return None
        if not self.ctx.config.auto_error_detect:
            return None
        info = candidate.error_info
        record = MistakeRecord(
            id=generate_id("mistake"),
            action=candidate.title,
            error_type="other",
            user_correction=candidate.content,
            correct_method=info.get("solution", ""),
            impact=info.get("pattern", ""),
            prevention_method=info.get("prevention", ""),
            related_rule="auto-detected",
        )
        self.ctx.mistakes.append(record)
        self.ctx.save_mistakes()
        self.ctx.stats.errors_recorded += 1
        logger.info("recorded auto-detected mistake", extra={"mistake": candidate.title})
        return record

    def extract_sync(self, snapshot: BufferSnapshot) -> list[MemoryEntry]:
        """Exit-time extraction: rules only, nothing here may await."""
        session_type, candidates = build_sync_entries(snapshot.observations, self.analyze_fn)
        if not self.ctx.config.full_auto:
            candidates = candidates[:1]
        saved: list[MemoryEntry] = []
        for candidate in candidates[:MAX_ENTRIES]:
            entry = MemoryEntry(
                id=generate_id("mem"),
                type=candidate.type,
                title=candidate.title,
                content=candidate.content,
                tags=union_tags(candidate.tags, ["auto-observed", f"auto-{candidate.category}"]),
                timestamp=now_iso(),
            )
            saved.append(self.dedup.save_with_sync_dedup(entry))
        logger.info(
            "exit-time extraction saved entries",
            extra={"session_type": session_type, "entries": len(saved)},
        )
        return saved
