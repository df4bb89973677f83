from __future__ import annotations

import asyncio
import json
from pathlib import Path

from codebuddy.buffer import BufferSnapshot, SessionBatch
from codebuddy.config import CodeBuddyConfig
from codebuddy.extractor import (
    KnowledgeExtractor,
    build_fallback_entries,
    build_sync_entries,
    infer_tags,
    parse_entries,
)
from codebuddy.oracle import OracleError
from codebuddy.state import BuddyContext
from codebuddy.store import MISTAKES_FILE, JsonStore
from codebuddy.types import (
    EditArgs,
    Observation,
    ReadArgs,
    ShellArgs,
    UnstructuredArgs,
    WriteArgs,
)


class FakeOracle:
    def __init__(self, *replies: str | Exception) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    def available(self) -> bool:
        return True

    async def ask(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "{}"
        if isinstance(reply, Exception):
            raise reply
        return reply


def _write(path: str, content: str) -> Observation:
    return Observation(
        timestamp="2026-01-01T00:00:00+00:00",
        tool="write",
        args=WriteArgs(path, content),
        file_edited=path,
        is_write_action=True,
    )


def _edit(path: str, new: str) -> Observation:
    return Observation(
        timestamp="2026-01-01T00:00:01+00:00",
        tool="edit",
        args=EditArgs(path, "", new),
        file_edited=path,
        is_write_action=True,
    )


def _shell(command: str, result: str = "ok", error: bool = False) -> Observation:
    return Observation(
        timestamp="2026-01-01T00:00:02+00:00",
        tool="bash",
        args=ShellArgs(command),
        result=result,
        has_error=error,
        is_write_action=True,
    )


def _read(path: str) -> Observation:
    return Observation(timestamp="2026-01-01T00:00:03+00:00", tool="read", args=ReadArgs(path))


GAME_SESSION = [
    _write("src/components/Board.jsx", "function drawBoard() {}\nrequestAnimationFrame(loop)"),
    _edit("src/game.js", "function moveSnake() {}"),
    _shell("npm test"),
]


def _snapshot(observations: list[Observation], delegation: str | None = None) -> BufferSnapshot:
    return BufferSnapshot((SessionBatch("s1", tuple(observations), delegation),))


def _ctx(tmp_path: Path, oracle: FakeOracle | None = None, **overrides: object) -> BuddyContext:
    cfg = CodeBuddyConfig(data_dir=str(tmp_path / "data"), **overrides)  # type: ignore[arg-type]
    return BuddyContext(cfg, oracle=oracle)


def test_parse_entries_wrapper_array_and_single() -> None:
    wrapper = json.dumps(
        {
            "intent": "task-execution",
            "entries": [
                {"type": "feature", "title": "Board rendering", "summary": "Canvas board"},
                {"type": "bogus", "title": "Second", "summary": "Body", "tags": ["x"]},
                {"title": "", "summary": "dropped"},
            ],
        }
    )
    intent, entries = parse_entries(f"Here is the JSON:\n{wrapper}")
    assert intent == "task-execution"
    assert [e.title for e in entries] == ["Board rendering", "Second"]
    assert entries[1].type == "note"

    _, array = parse_entries('[{"type": "lesson", "title": "A", "content": "B"}]')
    assert array[0].type == "lesson"
    assert array[0].content == "B"

    intent, single = parse_entries('{"type": "pattern", "title": "A", "summary": "B"}')
    assert intent == "unknown"
    assert len(single) == 1

    assert parse_entries("sorry, no json") == ("unknown", [])


def test_infer_tags_from_paths_and_commands() -> None:
    tags = infer_tags(GAME_SESSION, ["src/components/Board.jsx", "src/game.js"])
    assert tags == ["react", "ui-components", "javascript", "package-mgmt", "testing"]


def test_fallback_entry_uses_file_names_and_analyzer_insights() -> None:
    entries = build_fallback_entries(GAME_SESSION)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.title == "Work on Board, game"
    assert entry.type == "feature"
    assert "Logic: functions drawBoard" in entry.content
    assert "Logic: functions moveSnake" in entry.content
    assert "react" in entry.tags
    assert "game-loop" in entry.tags


def test_fallback_adds_error_entry_for_non_debugging_work() -> None:
    observations = [
        _shell("npm run build && npm test", "Error: Cannot find module 'x'", error=True),
        _read("README.md"),
        _read("package.json"),
        _read("docs/setup.md"),
    ]
    entries = build_fallback_entries(observations)
    assert [e.title for e in entries] == ["npm run build", "Error in bash"]
    assert entries[1].type == "bugfix"
    assert entries[1].category == "error"
    assert "Cannot find module" in entries[1].content


def test_fallback_without_files_or_actions() -> None:
    obs = Observation(
        timestamp="t", tool="todowrite", args=UnstructuredArgs({"todos": []}), is_write_action=True
    )
    (entry,) = build_fallback_entries([obs])
    assert entry.title == "Session activity (todowrite)"


def test_sync_entries_use_session_type_template() -> None:
    session_type, entries = build_sync_entries(GAME_SESSION)
    assert session_type == "build"
    assert entries[0].title == "Build Board, game"
    assert entries[0].type == "feature"
    assert "build-session" in entries[0].tags


def test_extract_with_oracle_saves_entries_and_mistakes(tmp_path: Path) -> None:
    reply = json.dumps(
        {
            "intent": "debugging",
            "entries": [
                {
                    "type": "bugfix",
                    "title": "Snake wall collision off by one",
                    "summary": "Grid bounds used <= instead of <",
                    "tags": ["snake"],
                    "category": "error",
                    "errorInfo": {
                        "pattern": "off-by-one",
                        "solution": "compare with <",
                        "prevention": "test grid edges",
                    },
                },
                {
                    "type": "pattern",
                    "title": "Board drawn with requestAnimationFrame",
                    "summary": "Render loop keeps frame timing smooth",
                },
            ],
        }
    )
    oracle = FakeOracle(reply)
    ctx = _ctx(tmp_path, oracle)

    report = asyncio.run(KnowledgeExtractor(ctx).extract(_snapshot(GAME_SESSION, "add walls")))

    assert report.intent == "debugging"
    assert report.used_fallback is False
    assert [r.action for r in report.results] == ["created", "created"]
    assert "auto-observed" in ctx.memories[0].tags
    assert "auto-error" in ctx.memories[0].tags
    assert "add walls" in oracle.prompts[0]
    assert len(report.mistakes) == 1
    assert ctx.mistakes[0].correct_method == "compare with <"
    assert ctx.stats.errors_recorded == 1
    stored = JsonStore(tmp_path / "data").read(MISTAKES_FILE, [])
    assert stored[0]["relatedRule"] == "auto-detected"


def test_extract_caps_entries_at_four(tmp_path: Path) -> None:
    entries = [
        {"type": "note", "title": f"Topic{i} unique{i}", "summary": f"word{i} other{i} more{i}x"}
        for i in range(6)
    ]
    ctx = _ctx(tmp_path, FakeOracle(json.dumps(entries)))
    report = asyncio.run(KnowledgeExtractor(ctx).extract(_snapshot(GAME_SESSION)))
    assert len(report.results) == 4


def test_extract_falls_back_when_oracle_fails(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path, FakeOracle(OracleError("down")))
    report = asyncio.run(KnowledgeExtractor(ctx).extract(_snapshot(GAME_SESSION)))
    assert report.used_fallback is True
    assert report.intent == "task-execution"
    assert ctx.memories[0].title == "Work on Board, game"


def test_extract_without_oracle_uses_rules(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    report = asyncio.run(KnowledgeExtractor(ctx).extract(_snapshot(GAME_SESSION)))
    assert report.used_fallback is True
    assert len(ctx.memories) == 1


def test_single_summary_mode_keeps_first_entry(tmp_path: Path) -> None:
    reply = json.dumps(
        [
            {"type": "feature", "title": "First", "summary": "alpha beta gamma"},
            {"type": "feature", "title": "Second", "summary": "delta epsilon zeta"},
        ]
    )
    oracle = FakeOracle(reply)
    ctx = _ctx(tmp_path, oracle, full_auto=False)
    report = asyncio.run(KnowledgeExtractor(ctx).extract(_snapshot(GAME_SESSION)))
    assert len(report.results) == 1
    assert ctx.memories[0].title == "First"


def test_mistakes_not_recorded_when_error_detection_off(tmp_path: Path) -> None:
    reply = json.dumps(
        {
            "type": "bugfix",
            "title": "Crash on start",
            "summary": "Missing env var",
            "category": "error",
            "errorInfo": {"solution": "set PORT"},
        }
    )
    ctx = _ctx(tmp_path, FakeOracle(reply), auto_error_detect=False)
    report = asyncio.run(KnowledgeExtractor(ctx).extract(_snapshot(GAME_SESSION)))
    assert report.mistakes == []
    assert ctx.mistakes == []


def test_extract_sync_is_rule_only(tmp_path: Path) -> None:
    oracle = FakeOracle()
    ctx = _ctx(tmp_path, oracle)
    saved = KnowledgeExtractor(ctx).extract_sync(_snapshot(GAME_SESSION))
    assert [entry.title for entry in saved] == ["Build Board, game"]
    assert oracle.prompts == []
    assert "auto-observed" in saved[0].tags
