from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from codebuddy import __version__
from codebuddy import cli as cli_module
from codebuddy.cli import app

runner = CliRunner()


def _data(tmp_path: Path) -> list[str]:
    return ["--data-dir", str(tmp_path / "buddy")]


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("serve", "recent", "search", "add", "stats", "llm-test"):
        assert command in result.stdout


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_add_then_duplicate_is_skipped_until_forced(tmp_path: Path) -> None:
    args = ["add", "Snake board", "Canvas grid rendering", "--type", "feature", "--tag", "canvas"]

    first = runner.invoke(app, [*args, *_data(tmp_path)])
    assert first.exit_code == 0
    assert "Memory created" in first.stdout

    again = runner.invoke(app, [*args, *_data(tmp_path)])
    assert again.exit_code == 2
    assert "similar" in again.stdout

    forced = runner.invoke(app, [*args, "--force", *_data(tmp_path)])
    assert forced.exit_code == 0
    assert "Memory created" in forced.stdout


def test_add_rejects_unknown_type(tmp_path: Path) -> None:
    result = runner.invoke(app, ["add", "T", "C", "--type", "essay", *_data(tmp_path)])
    assert result.exit_code == 1
    assert "invalid type" in result.stdout


def test_recent_search_and_stats(tmp_path: Path) -> None:
    empty = runner.invoke(app, ["recent", *_data(tmp_path)])
    assert empty.exit_code == 0
    assert "No memories stored yet" in empty.stdout

    runner.invoke(
        app, ["add", "Snake board", "Canvas grid rendering", "--type", "feature", *_data(tmp_path)]
    )

    recent = runner.invoke(app, ["recent", *_data(tmp_path)])
    assert recent.exit_code == 0
    assert "Snake board" in recent.stdout
    assert "(feature)" in recent.stdout

    filtered = runner.invoke(app, ["recent", "--kind", "lesson", *_data(tmp_path)])
    assert "No memories stored yet" in filtered.stdout

    found = runner.invoke(app, ["search", "snake board canvas", *_data(tmp_path)])
    assert found.exit_code == 0
    assert "Snake board" in found.stdout

    missing = runner.invoke(app, ["search", "database migration", *_data(tmp_path)])
    assert "No matching memories" in missing.stdout

    stats = runner.invoke(app, ["stats", *_data(tmp_path)])
    assert stats.exit_code == 0
    assert "Total: 1" in stats.stdout
    assert "feature: 1" in stats.stdout
    assert "Recorded: 0" in stats.stdout


def test_llm_test_without_provider_exits_nonzero() -> None:
    result = runner.invoke(app, ["llm-test"])
    assert result.exit_code == 1
    assert "No LLM provider configured" in result.stdout


def test_verbose_flag_enables_debug_logging(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[tuple[str | None, bool]] = []
    monkeypatch.setattr(
        cli_module,
        "configure_logging",
        lambda plugin_log, *, verbose=False: calls.append((plugin_log, verbose)),
    )
    result = runner.invoke(app, ["--verbose", "stats", *_data(tmp_path)])
    assert result.exit_code == 0
    assert calls == [("", True)]
