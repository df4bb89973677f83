from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from .classifier import ERROR_OUTPUT_RE, is_edit_tool, is_mutating_tool, is_write_tool
from .config import CodeBuddyConfig
from .types import (
    EditArgs,
    Observation,
    ReadArgs,
    SearchArgs,
    ShellArgs,
    ToolArgs,
    UnstructuredArgs,
    WriteArgs,
    now_iso,
)

WRITE_RESULT_CHARS = 800
READ_RESULT_CHARS = 300

SESSION_EVENT_TYPES = {
    "session.idle": "idle",
    "session.deleted": "deleted",
    "session.compacting": "compacting",
    "experimental.session.compacting": "compacting",
}


class EventError(ValueError):
    """A host event payload could not be understood."""


@dataclass(frozen=True, slots=True)
class ToolExecuted:
    session_id: str | None
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    output: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str | None = None


@dataclass(frozen=True, slots=True)
class ToolStarting:
    session_id: str | None
    tool: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: Literal["idle", "deleted", "compacting"]
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class Delegation:
    session_id: str | None
    context: str


HostEvent = Union[ToolExecuted, ToolStarting, SessionEvent, Delegation]


def _first_str(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _session_id(payload: dict[str, Any]) -> str | None:
    found = _first_str(payload, "sessionID", "session_id", "sessionId")
    if found:
        return found
    props = payload.get("properties")
    if isinstance(props, dict):
        found = _first_str(props, "sessionID", "session_id", "sessionId")
        if found:
            return found
        info = props.get("info")
        if isinstance(info, dict):
            return _first_str(info, "id")
    return None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def parse_host_event(payload: Any) -> HostEvent:
    if not isinstance(payload, dict):
        raise EventError("event must be an object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventError("event type missing")
    session_id = _session_id(payload)

    if event_type in SESSION_EVENT_TYPES:
        return SessionEvent(SESSION_EVENT_TYPES[event_type], session_id)  # type: ignore[arg-type]
    if event_type in {"tool.execute.after", "tool.execute.before"}:
        tool = payload.get("tool")
        if not isinstance(tool, str) or not tool:
            raise EventError(f"{event_type}: tool name missing")
        if event_type == "tool.execute.before":
            return ToolStarting(session_id, tool, _dict(payload.get("args")))
        timestamp = payload.get("timestamp")
        return ToolExecuted(
            session_id=session_id,
            tool=tool,
            args=_dict(payload.get("args")),
            output=_text(payload.get("output")),
            metadata=_dict(payload.get("metadata")),
            timestamp=timestamp if isinstance(timestamp, str) else None,
        )
    if event_type == "session.delegation":
        context = payload.get("context")
        if not isinstance(context, str) or not context.strip():
            raise EventError("session.delegation: context missing")
        return Delegation(session_id, context.strip())
    raise EventError(f"unsupported event type: {event_type}")


def parse_tool_args(tool: str, raw: dict[str, Any]) -> ToolArgs:
    """Narrow a loose argument mapping into one of the known shapes."""
    path = _first_str(raw, "filePath", "file_path", "path", "file")
    lowered = tool.lower()
    new = _first_str(raw, "new_string", "newString", "new")
    old = _first_str(raw, "old_string", "oldString", "old")
    if new is not None or old is not None:
        return EditArgs(path, old or "", new or "")
    content = raw.get("content")
    if isinstance(content, str) and ("write" in lowered or "create" in lowered or path):
        return WriteArgs(path, content)
    command = _first_str(raw, "command", "cmd")
    if command:
        return ShellArgs(command)
    pattern = _first_str(raw, "pattern", "query", "search")
    if pattern:
        return SearchArgs(pattern, path)
    if path and "read" in lowered:
        return ReadArgs(path)
    return UnstructuredArgs(dict(raw))


def should_observe(tool: str, config: CodeBuddyConfig) -> bool:
    if tool.startswith("buddy_"):
        return False
    return tool not in config.observe_ignore_tools


def build_observation(event: ToolExecuted, config: CodeBuddyConfig) -> Observation | None:
    if not should_observe(event.tool, config):
        return None
    merged = {**event.args, **event.metadata}
    file_edited = _first_str(event.metadata, "filePath", "path", "file")
    if file_edited is None and (is_edit_tool(event.tool) or is_write_tool(event.tool)):
        file_edited = _first_str(event.args, "filePath", "file_path", "path")
    args = parse_tool_args(event.tool, merged)
    is_write = is_mutating_tool(event.tool) or file_edited is not None
    if isinstance(args, ReadArgs):
        file_edited = None
        is_write = is_mutating_tool(event.tool)
    limit = WRITE_RESULT_CHARS if is_write else READ_RESULT_CHARS
    has_error = config.auto_error_detect and bool(ERROR_OUTPUT_RE.search(event.output))
    return Observation(
        timestamp=event.timestamp or now_iso(),
        tool=event.tool,
        args=args,
        result=event.output[:limit],
        has_error=has_error,
        file_edited=file_edited,
        is_write_action=is_write,
    )
