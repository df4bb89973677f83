from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

PLUGIN_LOG_MAX_BYTES = 512 * 1024
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(plugin_log: str | None, *, verbose: bool = False) -> None:
    """Send logs to stderr and, when configured, a rotating plugin log."""
    root = logging.getLogger()
    if root.handlers:
        return
    level = logging.DEBUG if verbose else logging.INFO
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level if verbose else logging.WARNING)
    stderr_handler.setFormatter(formatter)
    root.addHandler(stderr_handler)

    if not plugin_log:
        return
    path = Path(plugin_log).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=PLUGIN_LOG_MAX_BYTES, backupCount=1, encoding="utf-8"
        )
    except OSError as exc:
        print(f"code-buddy: plugin log unavailable at {path}: {exc}", file=sys.stderr)
        return
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
