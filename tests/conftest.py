from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_home_and_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("CODE_BUDDY_CONFIG", str(home / ".config" / "code-buddy" / "config.json"))
    monkeypatch.setenv("CODE_BUDDY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CODE_BUDDY_PLUGIN_LOG", "")
    for name in (
        "CODE_BUDDY_AUTO_OBSERVE",
        "CODE_BUDDY_FULL_AUTO",
        "CODE_BUDDY_OBSERVE_MIN_ACTIONS",
        "CODE_BUDDY_REQUIRE_EDIT",
        "CODE_BUDDY_AUTO_ERROR_DETECT",
        "CODE_BUDDY_LLM_PROVIDER",
        "CODE_BUDDY_LLM_MODEL",
        "CODE_BUDDY_OBSERVE_IGNORE_TOOLS",
        "CODE_BUDDY_COMPACTION_CONTEXT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
