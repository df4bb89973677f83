from __future__ import annotations

from pathlib import Path

from codebuddy.analyzer import analyze, read_for_analysis, sort_insights


def test_html_single_file_app() -> None:
    html = """<html><head><title>Neon Snake</title><style>body{}</style></head>
<body><canvas id="board"></canvas><div id="score"></div><script>start()</script></body></html>"""
    result = analyze("index.html", html)
    assert result.lines[0] == "Project: Neon Snake"
    assert "Structure: renders into a <canvas> element" in result.lines
    assert "Structure: key elements #board, #score" in result.lines
    assert result.tags == ["html", "canvas"]


def test_css_features() -> None:
    css = ":root { --neon: #0f0; }\n.grid { display: grid; }\n@keyframes pulse { }\n@media (max-width: 600px) {}"
    result = analyze("styles/main.css", css)
    assert "Styling: CSS grid layout" in result.lines
    assert "Styling: theme via CSS variables (--neon)" in result.lines
    assert "Styling: keyframe animations pulse" in result.lines
    assert "responsive" in result.tags


def test_script_insights_sorted_by_topic() -> None:
    js = """import React from 'react';
class Game {}
function drawBoard() {}
const moveSnake = (dir) => dir;
window.addEventListener('keydown', onKey);
localStorage.setItem('best', 1);
"""
    result = analyze("src/game.jsx", js)
    assert result.lines == [
        "Stack: imports react",
        "Logic: functions drawBoard, moveSnake",
        "Logic: handles keydown events",
        "Data: classes Game",
        "Data: persists state in localStorage",
    ]
    assert result.tags == ["react", "event-handling", "local-storage"]


def test_python_module() -> None:
    source = "import asyncio\nfrom dataclasses import dataclass\n\n@dataclass\nclass Job:\n    pass\n\nasync def run():\n    pass\n"
    result = analyze("worker.py", source)
    assert "Logic: functions run" in result.lines
    assert "Data: classes Job" in result.lines
    assert "Stack: imports asyncio, dataclasses" in result.lines
    assert result.tags == ["python", "asyncio", "dataclasses"]


def test_package_json_and_markdown() -> None:
    pkg = '{"scripts": {"dev": "vite", "test": "vitest"}, "dependencies": {"react": "^18"}}'
    result = analyze("package.json", pkg)
    assert result.lines == ["Stack: dependencies react", "Config: scripts dev, test"]
    assert analyze("README.md", "# Snake\n## Controls\n").summary == "Docs: sections Snake, Controls"


def test_unknown_extension_or_empty_content() -> None:
    assert analyze("binary.bin", "data").summary == ""
    assert analyze("app.js", "").lines == []


def test_sort_insights_puts_unknown_topics_last() -> None:
    assert sort_insights(["Other: x", "Docs: y", "Project: z"]) == ["Project: z", "Docs: y", "Other: x"]


def test_read_for_analysis_prefers_disk(tmp_path: Path) -> None:
    path = tmp_path / "app.js"
    path.write_text("function fromDisk() {}")
    assert read_for_analysis(str(path), fallback="function fromEdit() {}") == "function fromDisk() {}"
    assert read_for_analysis(str(tmp_path / "missing.js"), fallback="x") == "x"
