from __future__ import annotations

import datetime as dt
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Literal, TypedDict, Union

MemoryType = Literal["decision", "pattern", "bugfix", "lesson", "feature", "note"]
MemoryCategory = Literal["solution", "knowledge"]
SessionType = Literal["build", "debug", "enhance"]
DedupAction = Literal["created", "merged", "skipped"]
MatchTier = Literal["lexical", "semantic"]

VALID_MEMORY_TYPES: Final[tuple[str, ...]] = (
    "decision",
    "pattern",
    "bugfix",
    "lesson",
    "feature",
    "note",
)

MEMORY_TYPE_CATEGORY: Final[dict[str, str]] = {
    "decision": "solution",
    "bugfix": "solution",
    "lesson": "solution",
    "pattern": "knowledge",
    "feature": "knowledge",
    "note": "knowledge",
}

MAX_TITLE_CHARS: Final[int] = 60
MAX_MERGED_TAGS: Final[int] = 10

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def normalize_memory_type(value: object) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in VALID_MEMORY_TYPES:
            return lowered
    return "note"


def truncate_title(title: str, limit: int = MAX_TITLE_CHARS) -> str:
    title = title.strip()
    if len(title) <= limit:
        return title
    return f"{title[: limit - 3]}..."


def union_tags(*groups: list[str], limit: int = MAX_MERGED_TAGS) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for tag in group:
            if tag and tag not in merged:
                merged.append(tag)
    return merged[:limit]


def _coerce_timestamp(value: object) -> str:
    # Older stores persisted epoch milliseconds.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return dt.datetime.fromtimestamp(value / 1000, tz=dt.timezone.utc).isoformat()
    if isinstance(value, str) and value:
        return value
    return now_iso()


# ---- Tool arguments -------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EditArgs:
    file_path: str | None
    old_string: str
    new_string: str
    kind: Literal["edit"] = "edit"


@dataclass(frozen=True, slots=True)
class WriteArgs:
    file_path: str | None
    content: str
    kind: Literal["write"] = "write"


@dataclass(frozen=True, slots=True)
class ShellArgs:
    command: str
    kind: Literal["shell"] = "shell"


@dataclass(frozen=True, slots=True)
class SearchArgs:
    pattern: str
    path: str | None = None
    kind: Literal["search"] = "search"


@dataclass(frozen=True, slots=True)
class ReadArgs:
    file_path: str
    kind: Literal["read"] = "read"


@dataclass(frozen=True, slots=True)
class UnstructuredArgs:
    data: dict[str, Any] = field(default_factory=dict)
    kind: Literal["unstructured"] = "unstructured"


ToolArgs = Union[EditArgs, WriteArgs, ShellArgs, SearchArgs, ReadArgs, UnstructuredArgs]


def tool_args_to_dict(args: ToolArgs) -> dict[str, Any]:
    if isinstance(args, EditArgs):
        return {
            "filePath": args.file_path,
            "old_string": args.old_string,
            "new_string": args.new_string,
        }
    if isinstance(args, WriteArgs):
        return {"filePath": args.file_path, "content": args.content}
    if isinstance(args, ShellArgs):
        return {"command": args.command}
    if isinstance(args, SearchArgs):
        data: dict[str, Any] = {"pattern": args.pattern}
        if args.path:
            data["path"] = args.path
        return data
    if isinstance(args, ReadArgs):
        return {"filePath": args.file_path}
    return dict(args.data)


# ---- Observations ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Observation:
    timestamp: str
    tool: str
    args: ToolArgs
    result: str = ""
    has_error: bool = False
    file_edited: str | None = None
    is_write_action: bool = False


# ---- Stored records -------------------------------------------------------


@dataclass
class MemoryEntry:
    id: str
    type: str
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=now_iso)
    category: str | None = None

    def __post_init__(self) -> None:
        self.type = normalize_memory_type(self.type)
        if self.category not in {"solution", "knowledge"}:
            self.category = MEMORY_TYPE_CATEGORY[self.type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEntry:
        tags = data.get("tags")
        return cls(
            id=str(data.get("id") or generate_id("mem")),
            type=str(data.get("type") or "note"),
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
            timestamp=_coerce_timestamp(data.get("timestamp")),
            category=data.get("category"),
        )


@dataclass
class MistakeRecord:
    id: str
    action: str
    error_type: str = "other"
    user_correction: str = ""
    correct_method: str = ""
    impact: str = ""
    prevention_method: str = ""
    related_rule: str | None = None
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "action": self.action,
            "errorType": self.error_type,
            "userCorrection": self.user_correction,
            "correctMethod": self.correct_method,
            "impact": self.impact,
            "preventionMethod": self.prevention_method,
            "relatedRule": self.related_rule,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MistakeRecord:
        return cls(
            id=str(data.get("id") or generate_id("mistake")),
            action=str(data.get("action") or ""),
            error_type=str(data.get("errorType") or "other"),
            user_correction=str(data.get("userCorrection") or ""),
            correct_method=str(data.get("correctMethod") or ""),
            impact=str(data.get("impact") or ""),
            prevention_method=str(data.get("preventionMethod") or ""),
            related_rule=data.get("relatedRule"),
            timestamp=_coerce_timestamp(data.get("timestamp")),
        )


# ---- Extraction / dedup ---------------------------------------------------


class ErrorInfo(TypedDict, total=False):
    pattern: str
    solution: str
    prevention: str


@dataclass
class CandidateEntry:
    type: str
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    category: str = "task"
    error_info: ErrorInfo | None = None

    def __post_init__(self) -> None:
        self.type = normalize_memory_type(self.type)
        self.title = truncate_title(self.title)


@dataclass
class DedupResult:
    action: DedupAction
    message: str
    entry: MemoryEntry | None = None
    similar: list[MemoryEntry] = field(default_factory=list)
    tier: MatchTier | None = None


class FlushState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    COMPLETED = "completed"
