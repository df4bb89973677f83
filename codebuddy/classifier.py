from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from .types import EditArgs, Observation, SessionType

DEBUG_KEYWORDS_RE = re.compile(
    r"\b(bug|fix|debug|error|issue|broken|wrong|incorrect|missing|patch|crash|typo|regression)\b",
    re.IGNORECASE,
)
ERROR_OUTPUT_RE = re.compile(
    r"\b(error|Error|ERROR|failed|FAILED|FAIL|exception|Exception|panic|fatal|Fatal"
    r"|ENOENT|EACCES|TypeError|ReferenceError|SyntaxError)\b"
)
MUTATING_TOOL_PATTERNS = (
    "edit",
    "write",
    "create",
    "delete",
    "remove",
    "move",
    "rename",
    "bash",
    "shell",
    "terminal",
    "exec",
    "run",
    "insert",
    "replace",
    "patch",
    "apply",
)
FUNCTION_DEF_RE = re.compile(r"function\s+\w+")
MARKUP_ELEMENT_RE = re.compile(r"<\w+[\s>]")

ENHANCE_NET_LINES = 10
ENHANCE_MIN_FUNCTIONS = 1
ENHANCE_MIN_ELEMENTS = 2


def is_mutating_tool(tool: str) -> bool:
    lowered = tool.lower()
    return any(pattern in lowered for pattern in MUTATING_TOOL_PATTERNS)


def is_write_tool(tool: str) -> bool:
    lowered = tool.lower()
    return "write" in lowered or "create" in lowered


def is_edit_tool(tool: str) -> bool:
    return "edit" in tool.lower()


@dataclass(frozen=True, slots=True)
class EditDelta:
    added_lines: int = 0
    removed_lines: int = 0
    new_functions: int = 0
    new_elements: int = 0

    @property
    def net_lines(self) -> int:
        return self.added_lines - self.removed_lines


def measure_edits(observations: Sequence[Observation]) -> EditDelta:
    added = removed = functions = elements = 0
    for obs in observations:
        if not is_edit_tool(obs.tool):
            continue
        args = obs.args
        new = args.new_string if isinstance(args, EditArgs) else ""
        old = args.old_string if isinstance(args, EditArgs) else ""
        added += len(new.split("\n"))
        removed += len(old.split("\n"))
        functions += max(0, len(FUNCTION_DEF_RE.findall(new)) - len(FUNCTION_DEF_RE.findall(old)))
        markup = len(MARKUP_ELEMENT_RE.findall(new)) - len(MARKUP_ELEMENT_RE.findall(old))
        elements += max(0, markup)
    return EditDelta(added, removed, functions, elements)


def detect_session_type(observations: Sequence[Observation]) -> SessionType:
    """Classify a buffer as build, debug or enhance work.

    Writing new files is a build. Edits whose results mention a debug
    keyword are debug work. Otherwise edits that add more than ten net
    lines, a function, or two markup elements are an enhancement, and
    anything smaller is treated as a fix. Read-only buffers fall back to
    build.
    """
    if any(is_write_tool(obs.tool) for obs in observations):
        return "build"
    has_edits = any(is_edit_tool(obs.tool) for obs in observations)
    if not has_edits:
        return "build"
    if any(obs.result and DEBUG_KEYWORDS_RE.search(obs.result) for obs in observations):
        return "debug"
    delta = measure_edits(observations)
    if (
        delta.net_lines > ENHANCE_NET_LINES
        or delta.new_functions >= ENHANCE_MIN_FUNCTIONS
        or delta.new_elements >= ENHANCE_MIN_ELEMENTS
    ):
        return "enhance"
    return "debug"


@dataclass(frozen=True, slots=True)
class Intent:
    name: str
    type: str


def edited_files(observations: Sequence[Observation]) -> list[str]:
    seen: list[str] = []
    for obs in observations:
        if obs.file_edited and obs.file_edited not in seen:
            seen.append(obs.file_edited)
    return seen


def classify_intent(observations: Sequence[Observation]) -> Intent:
    """Rule-based intent used when no oracle classification is available."""
    files = edited_files(observations)
    writes = sum(1 for obs in observations if obs.is_write_action)
    reads = len(observations) - writes
    errors = sum(1 for obs in observations if obs.has_error)

    if errors >= 2:
        return Intent("debugging", "bugfix")
    if errors and files:
        return Intent("debugging", "bugfix")
    if len(files) >= 3:
        return Intent("refactoring", "pattern")
    if files and writes > reads:
        return Intent("task-execution", "feature")
    if reads > writes * 2:
        return Intent("exploration", "note")
    return Intent("task-execution", "feature" if files else "note")
