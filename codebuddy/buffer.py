from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from .types import Observation

logger = logging.getLogger(__name__)

MAX_OBSERVATIONS_PER_SESSION = 50
DEFAULT_SESSION_ID = "default"


@dataclass
class SessionBuffer:
    session_id: str
    observations: deque[Observation] = field(
        default_factory=lambda: deque(maxlen=MAX_OBSERVATIONS_PER_SESSION)
    )
    delegation_context: str | None = None


@dataclass(frozen=True, slots=True)
class SessionBatch:
    session_id: str
    observations: tuple[Observation, ...]
    delegation_context: str | None = None


@dataclass(frozen=True, slots=True)
class BufferSnapshot:
    """Observations copied out of one or all session buffers at flush time."""

    batches: tuple[SessionBatch, ...] = ()

    def __len__(self) -> int:
        return sum(len(batch.observations) for batch in self.batches)

    @property
    def observations(self) -> list[Observation]:
        merged: list[Observation] = []
        for batch in self.batches:
            merged.extend(batch.observations)
        return merged

    @property
    def session_ids(self) -> list[str]:
        return [batch.session_id for batch in self.batches]

    @property
    def delegation_contexts(self) -> list[str]:
        return [b.delegation_context for b in self.batches if b.delegation_context]

    @property
    def has_write_action(self) -> bool:
        return any(obs.is_write_action for obs in self.observations)

    @property
    def has_error(self) -> bool:
        return any(obs.has_error for obs in self.observations)


class ObservationBuffer:
    def __init__(self, max_per_session: int = MAX_OBSERVATIONS_PER_SESSION) -> None:
        self.max_per_session = max_per_session
        self._sessions: dict[str, SessionBuffer] = {}

    def _session(self, session_id: str | None) -> SessionBuffer:
        key = session_id or DEFAULT_SESSION_ID
        buf = self._sessions.get(key)
        if buf is None:
            buf = SessionBuffer(key, deque(maxlen=self.max_per_session))
            self._sessions[key] = buf
        return buf

    def push(self, obs: Observation, session_id: str | None = None) -> None:
        buf = self._session(session_id)
        if len(buf.observations) == self.max_per_session:
            logger.debug(
                "observation buffer full, evicting oldest",
                extra={"session_id": buf.session_id},
            )
        buf.observations.append(obs)

    def set_delegation_context(self, session_id: str | None, context: str | None) -> None:
        self._session(session_id).delegation_context = context or None

    def size(self, session_id: str | None = None) -> int:
        if session_id is not None:
            buf = self._sessions.get(session_id)
            return len(buf.observations) if buf else 0
        return sum(len(buf.observations) for buf in self._sessions.values())

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def observations(self, session_id: str) -> list[Observation]:
        buf = self._sessions.get(session_id)
        return list(buf.observations) if buf else []

    def aggregate(self) -> list[Observation]:
        """All sessions' observations, session by session, each in append order."""
        merged: list[Observation] = []
        for buf in self._sessions.values():
            merged.extend(buf.observations)
        return merged

    def snapshot_and_clear(self, session_id: str | None = None) -> BufferSnapshot:
        """Copy out and empty one session's buffer, or all of them.

        Nothing in here awaits, so under one event loop no observation can be
        appended between the copy and the clear.
        """
        if session_id is not None:
            targets = [self._sessions[session_id]] if session_id in self._sessions else []
        else:
            targets = list(self._sessions.values())
        batches = []
        for buf in targets:
            batches.append(
                SessionBatch(buf.session_id, tuple(buf.observations), buf.delegation_context)
            )
            del self._sessions[buf.session_id]
        return BufferSnapshot(tuple(batches))

    def restore(self, snapshot: BufferSnapshot) -> None:
        """Put a snapshot back ahead of anything buffered since it was taken."""
        for batch in snapshot.batches:
            if not batch.observations:
                continue
            buf = self._session(batch.session_id)
            newer = list(buf.observations)
            buf.observations.clear()
            buf.observations.extend(batch.observations)
            buf.observations.extend(newer)
            if batch.delegation_context and not buf.delegation_context:
                buf.delegation_context = batch.delegation_context
