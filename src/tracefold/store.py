"""Multi-session event store with cached reconstruction."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import TypeAlias

import anyio

from .logging import get_logger, log_pipeline
from .model import AgentId, Event, SessionId
from .schemas.events import SessionForked
from .settings import TracefoldSettings
from .stream import order_events
from .thinking import ThinkingState
from .ticker import LiveTicker, wall_clock_ms
from .timer import TimerReading
from .view import SessionView, reconstruct

logger = get_logger(__name__)


class SessionLog:
    """Append-only event list for one session behind the sequence gate."""

    __slots__ = ("session_id", "events", "last_seq", "version")

    def __init__(self, session_id: SessionId) -> None:
        self.session_id = session_id
        self.events: list[Event] = []
        self.last_seq: int | None = None
        self.version = 0

    def append(self, event: Event) -> bool:
        seq = event.seq
        if seq is not None and self.last_seq is not None and seq <= self.last_seq:
            return False
        if seq is not None:
            self.last_seq = seq
        self.events.append(event)
        self.version += 1
        return True


_CacheKey: TypeAlias = tuple[tuple[tuple[SessionId, int], ...], frozenset[AgentId]]


class SessionStore:
    def __init__(self, settings: TracefoldSettings | None = None) -> None:
        self.settings = settings or TracefoldSettings()
        self._sessions: dict[SessionId, SessionLog] = {}
        self._parent_of: dict[SessionId, SessionId] = {}
        self._cache: dict[SessionId, tuple[_CacheKey, SessionView]] = {}
        self.thinking = ThinkingState(
            main_session_id=self.settings.main_session_id,
            sentinel_agent_id=self.settings.sentinel_agent_id,
        )

    @property
    def main_session_id(self) -> SessionId | None:
        return self.thinking.main_session_id

    @property
    def session_ids(self) -> list[SessionId]:
        return list(self._sessions)

    def parent_of(self, session_id: SessionId) -> SessionId | None:
        return self._parent_of.get(session_id)

    def events(self, session_id: SessionId) -> list[Event]:
        log = self._sessions.get(session_id)
        return list(log.events) if log is not None else []

    def ingest(self, event: Event) -> bool:
        """Apply one event; False when the sequence gate dropped it."""
        log = self._sessions.get(event.session_id)
        if log is None:
            log = self._sessions[event.session_id] = SessionLog(event.session_id)
        if not log.append(event):
            log_pipeline(
                logger,
                "store.drop.duplicate",
                session_id=event.session_id,
                seq=event.seq,
            )
            return False
        self.thinking.apply(event)
        if isinstance(event.kind, SessionForked):
            parent = event.kind.parent_session_id or event.session_id
            if event.kind.child_session_id != parent:
                self._parent_of[event.kind.child_session_id] = parent
        return True

    def ingest_many(self, events: Iterable[Event]) -> int:
        by_session: dict[SessionId, list[Event]] = {}
        for event in events:
            by_session.setdefault(event.session_id, []).append(event)
        applied = 0
        for batch in by_session.values():
            for event in order_events(batch):
                applied += self.ingest(event)
        logger.debug("store.batch.ingested", applied=applied, sessions=len(by_session))
        return applied

    def _cache_key(self, session_id: SessionId) -> _CacheKey:
        versions = tuple((sid, log.version) for sid, log in self._sessions.items())
        return versions, self.thinking.thinking_in(session_id)

    def snapshot(self, session_id: SessionId | None = None) -> SessionView:
        session_id = session_id or self.main_session_id or ""
        key = self._cache_key(session_id)
        cached = self._cache.get(session_id)
        if cached is not None and cached[0] == key:
            return cached[1]
        log = self._sessions.get(session_id)
        child_events = {
            sid: other.events
            for sid, other in self._sessions.items()
            if sid != session_id and self._parent_of.get(session_id) != sid
        }
        view = reconstruct(
            log.events if log is not None else [],
            session_id=session_id,
            child_events=child_events,
            thinking_agents=key[1],
            delegate_tools=self.settings.delegate_tool_set,
            target_keys=self.settings.delegate_target_keys,
            sentinel_agent_id=self.settings.sentinel_agent_id,
        )
        self._cache[session_id] = (key, view)
        log_pipeline(logger, "store.snapshot.rebuilt", session_id=session_id)
        return view

    def timer_reading(
        self, now_ms: int, session_id: SessionId | None = None
    ) -> TimerReading:
        return self.snapshot(session_id).timer_reading(
            now_ms,
            self.thinking.agents,
            self.thinking.conversation_complete,
        )

    def is_ticking(self, session_id: SessionId | None = None) -> bool:
        return self.snapshot(session_id).timers.is_running

    def ticker(
        self,
        on_reading: Callable[[TimerReading], None],
        session_id: SessionId | None = None,
        *,
        clock: Callable[[], int] = wall_clock_ms,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> LiveTicker:
        """Ticker that pushes live readings while the session's timers run."""

        def on_tick(now_ms: int) -> None:
            on_reading(self.timer_reading(now_ms, session_id))

        return LiveTicker(
            is_active=lambda: self.is_ticking(session_id),
            on_tick=on_tick,
            interval_s=self.settings.tick_interval_s,
            clock=clock,
            sleep=sleep,
        )
