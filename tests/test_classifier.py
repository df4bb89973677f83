from __future__ import annotations

from codebuddy.classifier import (
    classify_intent,
    detect_session_type,
    is_mutating_tool,
    measure_edits,
)
from codebuddy.types import EditArgs, Observation, ReadArgs, ShellArgs, WriteArgs


def _edit(old: str, new: str, result: str = "ok", path: str = "src/app.js") -> Observation:
    return Observation(
        timestamp="2026-01-01T00:00:00+00:00",
        tool="edit",
        args=EditArgs(path, old, new),
        result=result,
        file_edited=path,
        is_write_action=True,
    )


def _lines(count: int) -> str:
    return "\n".join(f"line {i}" for i in range(count))


def test_write_is_build() -> None:
    obs = Observation(
        timestamp="t",
        tool="write",
        args=WriteArgs("index.html", "<html></html>"),
        file_edited="index.html",
        is_write_action=True,
    )
    assert detect_session_type([obs]) == "build"


def test_edit_with_debug_keyword_is_debug() -> None:
    assert detect_session_type([_edit("a", _lines(30), result="fixed the bug")]) == "debug"


def test_large_edit_is_enhance() -> None:
    assert detect_session_type([_edit(_lines(2), _lines(15))]) == "enhance"


def test_net_ten_lines_is_not_enough() -> None:
    assert detect_session_type([_edit(_lines(2), _lines(12))]) == "debug"
    assert detect_session_type([_edit(_lines(2), _lines(13))]) == "enhance"


def test_new_function_is_enhance() -> None:
    assert detect_session_type([_edit("x", "function drawBoard() {}")]) == "enhance"


def test_two_new_markup_elements_is_enhance() -> None:
    assert detect_session_type([_edit("<div>", "<div>\n<span>a</span>\n<p>b</p>")]) == "enhance"


def test_small_edit_is_debug() -> None:
    assert detect_session_type([_edit("x = 1", "x = 2")]) == "debug"


def test_empty_or_read_only_is_build() -> None:
    read = Observation(timestamp="t", tool="read", args=ReadArgs("README.md"))
    assert detect_session_type([]) == "build"
    assert detect_session_type([read]) == "build"


def test_measure_edits_counts_only_additions() -> None:
    delta = measure_edits([_edit("function a() {}\nfunction b() {}", "function a() {}")])
    assert delta.new_functions == 0
    assert delta.net_lines == -1


def test_is_mutating_tool() -> None:
    assert is_mutating_tool("edit")
    assert is_mutating_tool("Bash")
    assert not is_mutating_tool("read")
    assert not is_mutating_tool("grep")


def test_classify_intent_debugging_on_errors() -> None:
    failing = Observation(
        timestamp="t",
        tool="bash",
        args=ShellArgs("npm test"),
        result="Error: boom",
        has_error=True,
        is_write_action=True,
    )
    assert classify_intent([failing, failing]).name == "debugging"
    assert classify_intent([failing, _edit("a", "b")]).type == "bugfix"


def test_classify_intent_refactoring_and_exploration() -> None:
    edits = [_edit("a", "b", path=f"src/m{i}.js") for i in range(3)]
    assert classify_intent(edits).name == "refactoring"
    reads = [Observation(timestamp="t", tool="read", args=ReadArgs(f"f{i}")) for i in range(3)]
    assert classify_intent(reads).name == "exploration"
    assert classify_intent(reads).type == "note"
