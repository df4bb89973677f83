from __future__ import annotations

import json
import logging
from typing import Any

from .config import CodeBuddyConfig, load_config
from .coordinator import FlushCoordinator
from .events import (
    Delegation,
    EventError,
    HostEvent,
    SessionEvent,
    ToolExecuted,
    ToolStarting,
    build_observation,
    parse_host_event,
)
from .extractor import ExtractionReport
from .guides import build_compaction_context, guides_for_tool, render_guides
from .oracle import OracleClient
from .state import BuddyContext, Oracle

logger = logging.getLogger(__name__)


def create_context(
    config: CodeBuddyConfig | None = None,
    oracle: Oracle | None = None,
) -> BuddyContext:
    cfg = config or load_config()
    if oracle is None:
        client = OracleClient(cfg)
        oracle = client if client.available() else None
    return BuddyContext(cfg, oracle=oracle)


def _report_payload(report: ExtractionReport) -> dict[str, Any]:
    return {
        "intent": report.intent,
        "fallback": report.used_fallback,
        "results": [
            {
                "action": result.action,
                "message": result.message,
                "id": result.entry.id if result.entry else None,
                "similar": [entry.id for entry in result.similar],
            }
            for result in report.results
        ],
    }


class HostBridge:
    """Routes host runtime events to the buffer, coordinator and guides."""

    def __init__(self, ctx: BuddyContext, coordinator: FlushCoordinator | None = None) -> None:
        self.ctx = ctx
        self.coordinator = coordinator or FlushCoordinator(ctx)

    async def handle(self, event: HostEvent) -> dict[str, Any] | None:
        if isinstance(event, ToolExecuted):
            obs = build_observation(event, self.ctx.config)
            if obs is not None:
                self.coordinator.observe(obs, event.session_id)
            return None
        if isinstance(event, ToolStarting):
            guides = guides_for_tool(self.ctx, event)
            if not guides:
                return None
            return {
                "type": "guides",
                "sessionID": event.session_id,
                "context": render_guides(guides),
                "ids": [guide.entry.id for guide in guides],
            }
        if isinstance(event, Delegation):
            self.ctx.buffer.set_delegation_context(event.session_id, event.context)
            return None
        if isinstance(event, SessionEvent):
            return await self._session_event(event)
        return None

    async def _session_event(self, event: SessionEvent) -> dict[str, Any] | None:
        if event.kind == "compacting":
            if not self.ctx.config.compaction_context:
                return None
            block = build_compaction_context(self.ctx)
            if block is None:
                return None
            return {"type": "context", "sessionID": event.session_id, "context": block}
        if event.kind == "deleted":
            report = await self.coordinator.on_session_deleted(event.session_id)
        else:
            report = await self.coordinator.on_session_idle(event.session_id)
        if report is None:
            return None
        return {"type": "flushed", "sessionID": event.session_id, **_report_payload(report)}

    def parse_line(self, line: str) -> HostEvent | None:
        line = line.strip()
        if not line:
            return None
        try:
            return parse_host_event(json.loads(line))
        except (json.JSONDecodeError, EventError) as exc:
            logger.warning("skipping malformed host event", extra={"error": str(exc)})
            return None

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        event = self.parse_line(line)
        if event is None:
            return None
        return await self.handle(event)
