from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .buffer import ObservationBuffer
from .config import CodeBuddyConfig, load_config
from .store import MEMORIES_FILE, MISTAKES_FILE, JsonStore
from .types import MemoryEntry, MistakeRecord

if TYPE_CHECKING:
    from .oracle import ConnectionReport

logger = logging.getLogger(__name__)


class Oracle(Protocol):
    def available(self) -> bool: ...

    async def ask(self, prompt: str) -> str: ...


class NullOracle:
    """Stands in when no provider is configured; never reachable."""

    def available(self) -> bool:
        return False

    async def ask(self, prompt: str) -> str:
        from .oracle import OracleUnavailable

        raise OracleUnavailable("no llm provider configured")

    async def test_connection(self) -> ConnectionReport:
        return {"ok": False, "latency_ms": 0, "error": "no llm provider configured"}


@dataclass
class SessionStats:
    started_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    memories_created: int = 0
    memories_merged: int = 0
    errors_recorded: int = 0
    flushes: int = 0


class BuddyContext:
    """Process-wide state handed to every component.

    Holds the loaded memories and mistakes, the observation buffer, the
    oracle and the store they persist through. The in-memory lists stay
    authoritative when a write fails.
    """

    def __init__(
        self,
        config: CodeBuddyConfig | None = None,
        store: JsonStore | None = None,
        oracle: Oracle | None = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store or JsonStore(Path(self.config.data_dir))
        self.oracle: Oracle = oracle or NullOracle()
        self.buffer = ObservationBuffer()
        self.stats = SessionStats()
        self.memories: list[MemoryEntry] = [
            MemoryEntry.from_dict(item)
            for item in self.store.read(MEMORIES_FILE, [])
            if isinstance(item, dict)
        ]
        self.mistakes: list[MistakeRecord] = [
            MistakeRecord.from_dict(item)
            for item in self.store.read(MISTAKES_FILE, [])
            if isinstance(item, dict)
        ]

    def save_memories(self) -> bool:
        ok = self.store.write(MEMORIES_FILE, [entry.to_dict() for entry in self.memories])
        if not ok:
            logger.warning("memories kept in memory only", extra={"count": len(self.memories)})
        return ok

    def save_mistakes(self) -> bool:
        ok = self.store.write(MISTAKES_FILE, [record.to_dict() for record in self.mistakes])
        if not ok:
            logger.warning("mistakes kept in memory only", extra={"count": len(self.mistakes)})
        return ok

    def oracle_available(self) -> bool:
        try:
            return self.oracle.available()
        except Exception as exc:
            logger.warning("oracle availability check failed", exc_info=exc)
            return False

    def touch(self) -> None:
        self.stats.last_activity = time.time()

    def memories_by_category(self, category: str) -> list[MemoryEntry]:
        return [entry for entry in self.memories if entry.category == category]

    def recent_memories(self, limit: int = 5) -> list[MemoryEntry]:
        return sorted(self.memories, key=lambda m: m.timestamp, reverse=True)[:limit]

    def recent_mistakes(self, limit: int = 3) -> list[MistakeRecord]:
        return sorted(self.mistakes, key=lambda m: m.timestamp, reverse=True)[:limit]
