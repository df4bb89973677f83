from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_ANALYZED_BYTES = 200_000

# Topic prefixes, in the order insight lines are presented.
TOPIC_PRIORITY = ("Project", "Structure", "Stack", "Styling", "Logic", "Data", "Config", "Docs")


@dataclass(frozen=True)
class Analysis:
    summary: str = ""
    tags: list[str] = field(default_factory=list)

    @property
    def lines(self) -> list[str]:
        return [line for line in self.summary.split("\n") if line]


Analyzer = Callable[[str], Analysis]


def topic_rank(line: str) -> int:
    topic = line.split(":", 1)[0].strip()
    try:
        return TOPIC_PRIORITY.index(topic)
    except ValueError:
        return len(TOPIC_PRIORITY)


def sort_insights(lines: list[str]) -> list[str]:
    return sorted(lines, key=topic_rank)


def _names(pattern: re.Pattern[str], content: str, limit: int = 6) -> list[str]:
    seen: list[str] = []
    for match in pattern.finditer(content):
        name = match.group(1)
        if name and name not in seen:
            seen.append(name)
        if len(seen) >= limit:
            break
    return seen


def _analysis(lines: list[str], tags: list[str]) -> Analysis:
    unique_tags: list[str] = []
    for tag in tags:
        if tag not in unique_tags:
            unique_tags.append(tag)
    return Analysis("\n".join(lines), unique_tags)


_HTML_TITLE_RE = re.compile(r"<title>([^<]+)</title>", re.IGNORECASE)
_HTML_TAG_RE = re.compile(r"<([a-z][a-z0-9-]*)[\s>]", re.IGNORECASE)
_HTML_ID_RE = re.compile(r"\bid=[\"']([\w-]+)[\"']")


def analyze_html(content: str) -> Analysis:
    lines: list[str] = []
    tags = ["html"]
    title = _HTML_TITLE_RE.search(content)
    if title:
        lines.append(f"Project: {title.group(1).strip()}")
    elements = {tag.lower() for tag in _HTML_TAG_RE.findall(content)}
    embedded = [name for name in ("style", "script") if name in elements]
    if embedded:
        lines.append(f"Structure: single HTML file with embedded {' and '.join(embedded)}")
    if "canvas" in elements:
        lines.append("Structure: renders into a <canvas> element")
        tags.append("canvas")
    ids = _names(_HTML_ID_RE, content)
    if ids:
        lines.append(f"Structure: key elements #{', #'.join(ids)}")
    if "form" in elements:
        lines.append("Logic: contains form input handling")
        tags.append("forms")
    return _analysis(lines, tags)


_CSS_VAR_RE = re.compile(r"(--[\w-]+)\s*:")
_CSS_KEYFRAMES_RE = re.compile(r"@keyframes\s+([\w-]+)")


def analyze_css(content: str) -> Analysis:
    lines: list[str] = []
    tags = ["css"]
    if re.search(r"display\s*:\s*grid", content):
        lines.append("Styling: CSS grid layout")
        tags.append("css-grid")
    if re.search(r"display\s*:\s*flex", content):
        lines.append("Styling: flexbox layout")
        tags.append("flexbox")
    variables = _names(_CSS_VAR_RE, content)
    if variables:
        lines.append(f"Styling: theme via CSS variables ({', '.join(variables)})")
        tags.append("css-variables")
    animations = _names(_CSS_KEYFRAMES_RE, content)
    if animations:
        lines.append(f"Styling: keyframe animations {', '.join(animations)}")
        tags.append("css-animation")
    if "@media" in content:
        lines.append("Styling: responsive @media breakpoints")
        tags.append("responsive")
    return _analysis(lines, tags)


_JS_FUNC_RE = re.compile(
    r"(?:function\s+(\w+)|(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?(?:\([^)]*\)|\w+)\s*=>)"
)
_JS_CLASS_RE = re.compile(r"\bclass\s+(\w+)")
_JS_IMPORT_RE = re.compile(r"(?:import\s[^'\"]*?from\s+|require\()\s*['\"]([^'\"]+)['\"]")
_JS_EVENT_RE = re.compile(r"addEventListener\(\s*['\"](\w+)['\"]")
_FRAMEWORK_TAGS = {
    "react": "react",
    "vue": "vue",
    "svelte": "svelte",
    "express": "express",
    "next": "nextjs",
    "three": "threejs",
}


def analyze_script(content: str) -> Analysis:
    lines: list[str] = []
    tags: list[str] = []
    functions: list[str] = []
    for match in _JS_FUNC_RE.finditer(content):
        name = match.group(1) or match.group(2)
        if name and name not in functions:
            functions.append(name)
    if functions:
        lines.append(f"Logic: functions {', '.join(functions[:6])}")
    classes = _names(_JS_CLASS_RE, content)
    if classes:
        lines.append(f"Data: classes {', '.join(classes)}")
    modules = _names(_JS_IMPORT_RE, content, limit=8)
    if modules:
        lines.append(f"Stack: imports {', '.join(modules)}")
        for module in modules:
            root = module.split("/")[0].lstrip("@")
            if root in _FRAMEWORK_TAGS:
                tags.append(_FRAMEWORK_TAGS[root])
    events = _names(_JS_EVENT_RE, content)
    if events:
        lines.append(f"Logic: handles {', '.join(events)} events")
        tags.append("event-handling")
    if "requestAnimationFrame" in content:
        lines.append("Logic: animation loop via requestAnimationFrame")
        tags.append("game-loop")
    if "localStorage" in content:
        lines.append("Data: persists state in localStorage")
        tags.append("local-storage")
    if re.search(r"\bfetch\(", content):
        lines.append("Data: calls HTTP APIs with fetch")
        tags.append("http-client")
    return _analysis(lines, tags)


_PY_DEF_RE = re.compile(r"^\s*(?:async\s+)?def\s+(\w+)", re.MULTILINE)
_PY_CLASS_RE = re.compile(r"^\s*class\s+(\w+)", re.MULTILINE)
_PY_IMPORT_RE = re.compile(r"^\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))", re.MULTILINE)


def analyze_python(content: str) -> Analysis:
    lines: list[str] = []
    tags = ["python"]
    defs = [name for name in _names(_PY_DEF_RE, content, limit=8) if not name.startswith("__")]
    if defs:
        lines.append(f"Logic: functions {', '.join(defs[:6])}")
    classes = _names(_PY_CLASS_RE, content)
    if classes:
        lines.append(f"Data: classes {', '.join(classes)}")
    modules: list[str] = []
    for match in _PY_IMPORT_RE.finditer(content):
        root = (match.group(1) or match.group(2) or "").split(".")[0]
        if root and root not in modules:
            modules.append(root)
    if modules:
        lines.append(f"Stack: imports {', '.join(modules[:8])}")
    if "async def" in content:
        tags.append("asyncio")
    if re.search(r"^\s*@dataclass", content, re.MULTILINE):
        tags.append("dataclasses")
    return _analysis(lines, tags)


def analyze_json(content: str) -> Analysis:
    lines: list[str] = []
    tags = ["config"]
    deps = re.search(r'"dependencies"\s*:\s*\{([^}]*)\}', content)
    if deps:
        names = re.findall(r'"([^"]+)"\s*:', deps.group(1))
        if names:
            lines.append(f"Stack: dependencies {', '.join(names[:8])}")
            tags.append("package-mgmt")
    scripts = re.search(r'"scripts"\s*:\s*\{([^}]*)\}', content)
    if scripts:
        names = re.findall(r'"([^"]+)"\s*:', scripts.group(1))
        if names:
            lines.append(f"Config: scripts {', '.join(names[:6])}")
    return _analysis(lines, tags)


_MD_HEADING_RE = re.compile(r"^#{1,3}\s+(.+)$", re.MULTILINE)


def analyze_markdown(content: str) -> Analysis:
    headings = _names(_MD_HEADING_RE, content)
    if not headings:
        return Analysis("", ["docs"])
    return Analysis(f"Docs: sections {', '.join(h.strip() for h in headings)}", ["docs"])


ANALYZERS: dict[str, Analyzer] = {
    ".html": analyze_html,
    ".htm": analyze_html,
    ".css": analyze_css,
    ".scss": analyze_css,
    ".js": analyze_script,
    ".mjs": analyze_script,
    ".jsx": analyze_script,
    ".ts": analyze_script,
    ".tsx": analyze_script,
    ".py": analyze_python,
    ".json": analyze_json,
    ".md": analyze_markdown,
}


def analyze(file_path: str, contents: str) -> Analysis:
    """Summarise one file's contents; an empty summary is a normal result."""
    analyzer = ANALYZERS.get(Path(file_path).suffix.lower())
    if analyzer is None or not contents:
        return Analysis()
    analysis = analyzer(contents[:MAX_ANALYZED_BYTES])
    return Analysis("\n".join(sort_insights(analysis.lines)), analysis.tags)


def read_for_analysis(file_path: str, fallback: str = "") -> str:
    path = Path(file_path)
    try:
        if path.is_file() and path.stat().st_size <= MAX_ANALYZED_BYTES:
            return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.debug("analyzer read failed", extra={"path": file_path}, exc_info=exc)
    return fallback
