from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from collections.abc import Callable
from typing import Any, TextIO

from ..events import HostEvent, SessionEvent
from ..host import HostBridge
from ..state import BuddyContext

logger = logging.getLogger(__name__)


def _is_background(event: HostEvent) -> bool:
    return isinstance(event, SessionEvent) and event.kind in {"idle", "deleted"}


def _emit(out: TextIO, response: dict[str, Any] | None) -> None:
    if response is None:
        return
    out.write(json.dumps(response, ensure_ascii=False) + "\n")
    out.flush()


def _start_reader(stream: TextIO, queue: asyncio.Queue[str]) -> threading.Thread:
    """Pump lines into `queue` from a daemon thread; "" marks EOF.

    A daemon thread blocked on stdin does not hold up interpreter exit.
    """
    loop = asyncio.get_running_loop()

    def _put(line: str) -> bool:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        except RuntimeError:
            return False
        return True

    def _pump() -> None:
        for line in iter(stream.readline, ""):
            if not _put(line):
                return
        _put("")

    thread = threading.Thread(target=_pump, name="code-buddy-stdin", daemon=True)
    thread.start()
    return thread


async def serve_stream(bridge: HostBridge, stream: TextIO, out: TextIO) -> list[dict[str, Any]]:
    """Feed newline-delimited host events to the bridge until EOF.

    Idle and delete notifications run as tasks so later tool events keep
    flowing while an extraction waits on the oracle. Returns the responses
    written, in write order.
    """
    written: list[dict[str, Any]] = []
    pending: set[asyncio.Task[dict[str, Any] | None]] = set()

    def _done(task: asyncio.Task[dict[str, Any] | None]) -> None:
        pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("session event failed", exc_info=exc)
            return
        response = task.result()
        if response is not None:
            written.append(response)
            _emit(out, response)

    lines: asyncio.Queue[str] = asyncio.Queue()
    _start_reader(stream, lines)
    while True:
        line = await lines.get()
        if not line:
            break
        event = bridge.parse_line(line)
        if event is None:
            continue
        if _is_background(event):
            task = asyncio.create_task(bridge.handle(event))
            pending.add(task)
            task.add_done_callback(_done)
            continue
        response = await bridge.handle(event)
        if response is not None:
            written.append(response)
            _emit(out, response)

    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    saved = bridge.coordinator.on_process_exit()
    if saved:
        logger.info("exit flush saved memories", extra={"count": len(saved)})
    return written


def serve_cmd(*, context_factory: Callable[[], BuddyContext]) -> None:
    """Run the host bridge over stdin/stdout."""

    ctx = context_factory()
    bridge = HostBridge(ctx)
    bridge.coordinator.install_exit_hook()
    logger.info(
        "code-buddy bridge started",
        extra={"data_dir": str(ctx.store.base_dir), "oracle": ctx.oracle_available()},
    )
    try:
        asyncio.run(serve_stream(bridge, sys.stdin, sys.stdout))
    except KeyboardInterrupt:
        logger.info("code-buddy bridge interrupted")
