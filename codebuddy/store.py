from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MEMORIES_FILE = "memory.json"
MISTAKES_FILE = "mistakes.json"


class JsonStore:
    """Named JSON documents under one data directory.

    Reads never raise: a missing or unreadable document yields the caller's
    default. Writes report success as a bool and log failures.
    """

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir).expanduser()

    def path_for(self, name: str) -> Path:
        return self.base_dir / name

    def read(self, name: str, default: T) -> T | Any:
        path = self.path_for(name)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("store read failed", extra={"store_file": str(path)}, exc_info=exc)
            return default

    def write(self, name: str, data: Any) -> bool:
        path = self.path_for(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.error("store write failed", extra={"store_file": str(path)}, exc_info=exc)
            return False
        return True
