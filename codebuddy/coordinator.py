from __future__ import annotations

import asyncio
import atexit
import logging
import signal
import threading
from types import FrameType

from .buffer import BufferSnapshot
from .extractor import ExtractionReport, KnowledgeExtractor
from .state import BuddyContext
from .types import FlushState, MemoryEntry, Observation

logger = logging.getLogger(__name__)


class FlushCoordinator:
    """Runs at most one knowledge-extraction pass per idle cycle.

    A cycle goes idle -> started -> completed, and returns to idle once new
    observations arrive. Idle and session-deleted notifications start the
    oracle-capable path; the exit hook runs a rule-only pass for whatever a
    started flush never finished. Taking the batch out of the buffer and
    entering `started` happen together with no await in between, so a second
    notification arriving while the oracle is busy sees `started` and leaves.
    """

    def __init__(self, ctx: BuddyContext, extractor: KnowledgeExtractor | None = None) -> None:
        self.ctx = ctx
        self.extractor = extractor or KnowledgeExtractor(ctx)
        self.state = FlushState.IDLE
        self._exit_hook_registered = False
        self._exit_ran = False

    def observe(self, obs: Observation, session_id: str | None = None) -> None:
        if not self.ctx.config.auto_observe:
            return
        self.ctx.buffer.push(obs, session_id)
        self.ctx.touch()
        if self.state is FlushState.COMPLETED:
            self.state = FlushState.IDLE

    def _passes_gate(self, snapshot: BufferSnapshot) -> bool:
        if not self.ctx.config.require_edit_for_record:
            return True
        if snapshot.has_write_action or snapshot.has_error:
            return True
        logger.info(
            "read-only session, discarding observations",
            extra={"observations": len(snapshot), "sessions": snapshot.session_ids},
        )
        return False

    def _ready(self) -> bool:
        cfg = self.ctx.config
        return cfg.auto_observe and self.ctx.buffer.size() >= cfg.observe_min_actions

    def _begin(self) -> BufferSnapshot | None:
        if self.state is not FlushState.IDLE:
            logger.debug("flush already %s, ignoring trigger", self.state.value)
            return None
        if not self._ready():
            return None
        snapshot = self.ctx.buffer.snapshot_and_clear()
        if not self._passes_gate(snapshot):
            return None
        self.state = FlushState.STARTED
        self.ctx.stats.flushes += 1
        return snapshot

    async def flush(self, trigger: str = "idle") -> ExtractionReport | None:
        snapshot = self._begin()
        if snapshot is None:
            return None
        logger.info(
            "flush started",
            extra={"trigger": trigger, "observations": len(snapshot)},
        )
        try:
            report = await self.extractor.extract(snapshot)
        except asyncio.CancelledError:
            # Leave the batch for the exit hook.
            self.ctx.buffer.restore(snapshot)
            self.state = FlushState.IDLE
            raise
        except Exception as exc:
            logger.exception("flush failed, retrying with rule-based extraction", exc_info=exc)
            self.ctx.buffer.restore(snapshot)
            self._run_sync_fallback()
            report = None
        self._finish()
        return report

    def _finish(self) -> None:
        # Observations pushed while the pass ran belong to the next cycle.
        if self.ctx.buffer.size():
            self.state = FlushState.IDLE
        else:
            self.state = FlushState.COMPLETED

    async def on_session_idle(self, session_id: str | None = None) -> ExtractionReport | None:
        self.ctx.touch()
        return await self.flush("idle")

    async def on_session_deleted(self, session_id: str | None = None) -> ExtractionReport | None:
        self.ctx.touch()
        return await self.flush("deleted")

    def _run_sync_fallback(self, snapshot: BufferSnapshot | None = None) -> list[MemoryEntry]:
        if snapshot is None:
            snapshot = self.ctx.buffer.snapshot_and_clear()
        if not snapshot.observations:
            return []
        try:
            return self.extractor.extract_sync(snapshot)
        except Exception as exc:
            logger.exception(
                "rule-based flush failed, dropping batch",
                extra={"observations": len(snapshot)},
                exc_info=exc,
            )
            return []

    def on_process_exit(self) -> list[MemoryEntry]:
        """Exit-time flush. Runs once and never awaits."""
        if self._exit_ran:
            return []
        self._exit_ran = True
        if self.state is FlushState.COMPLETED or not self._ready():
            return []
        snapshot = self.ctx.buffer.snapshot_and_clear()
        if not self._passes_gate(snapshot):
            return []
        logger.info("exit flush started", extra={"observations": len(snapshot)})
        self.state = FlushState.STARTED
        self.ctx.stats.flushes += 1
        saved = self._run_sync_fallback(snapshot)
        self._finish()
        return saved

    def _on_sigterm(self, signum: int, frame: FrameType | None) -> None:
        # Cancelled flushes restore their batch while SystemExit unwinds.
        logger.info("terminated by signal %s, flushing on exit", signum)
        raise SystemExit(128 + signum)

    def install_exit_hook(self) -> None:
        """Run `on_process_exit` at interpreter exit, including on SIGTERM."""
        if self._exit_hook_registered:
            return
        atexit.register(self.on_process_exit)
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, self._on_sigterm)
        self._exit_hook_registered = True
