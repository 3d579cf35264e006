"""Fold streaming content/thinking deltas into single assistant messages."""

from __future__ import annotations

from collections.abc import Iterable

import msgspec

from .logging import get_logger, log_pipeline
from .model import Event, LogEntry
from .schemas.events import (
    AssistantContentDelta,
    AssistantMessage,
    AssistantThinkingDelta,
)

logger = get_logger(__name__)


def _non_empty(value: str | None) -> str | None:
    return value if value else None


class StreamMerger:
    """Per-session log of ``LogEntry`` items with the sequence gate applied.

    Deltas never add a second entry for the same logical message: the first
    delta creates a live accumulator, later ones extend it in place, and the
    stored ``AssistantMessage`` replaces it.
    """

    __slots__ = ("session_id", "entries", "last_seq")

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.entries: list[LogEntry] = []
        self.last_seq: int | None = None

    def is_duplicate(self, event: Event) -> bool:
        seq = event.seq
        return seq is not None and self.last_seq is not None and seq <= self.last_seq

    def apply(self, event: Event) -> bool:
        if self.is_duplicate(event):
            log_pipeline(
                logger,
                "stream.drop.duplicate",
                session_id=self.session_id,
                seq=event.seq,
                last_seq=self.last_seq,
            )
            return False
        if event.seq is not None:
            self.last_seq = event.seq

        match event.kind:
            case AssistantContentDelta(content=text, message_id=message_id):
                self._apply_delta(event, message_id, content=text)
            case AssistantThinkingDelta(content=text, message_id=message_id):
                self._apply_delta(event, message_id, thinking=text)
            case AssistantMessage():
                self._apply_stored(event, event.kind)
            case _:
                self.entries.append(LogEntry.from_event(event))
        return True

    def find_live(self, message_id: str | None, agent_id: str | None) -> int:
        """Index of the live accumulator for a message, or -1.

        With a message id only an accumulator carrying that id, or one that
        never got an id from the same agent, qualifies.
        """
        for index in range(len(self.entries) - 1, -1, -1):
            entry = self.entries[index]
            if not entry.live:
                continue
            if message_id is not None and entry.stream_message_id == message_id:
                return index
        for index in range(len(self.entries) - 1, -1, -1):
            entry = self.entries[index]
            if not entry.live or entry.agent_id != agent_id:
                continue
            if message_id is None or entry.stream_message_id is None:
                return index
        return -1

    def _apply_delta(
        self,
        event: Event,
        message_id: str | None,
        *,
        content: str = "",
        thinking: str = "",
    ) -> None:
        index = self.find_live(message_id, event.agent_id)
        if index < 0:
            self.entries.append(
                LogEntry(
                    seq=event.seq,
                    session_id=event.session_id,
                    agent_id=event.agent_id,
                    timestamp_ms=event.timestamp_ms,
                    kind=AssistantMessage(
                        content=content,
                        thinking=thinking or None,
                        message_id=message_id,
                    ),
                    live=True,
                    stream_message_id=message_id,
                )
            )
            log_pipeline(
                logger,
                "stream.delta.created",
                session_id=self.session_id,
                seq=event.seq,
                message_id=message_id,
            )
            return
        live = self.entries[index]
        current = live.kind
        assert isinstance(current, AssistantMessage)
        live.kind = msgspec.structs.replace(
            current,
            content=current.content + content,
            thinking=_non_empty((current.thinking or "") + thinking),
        )
        log_pipeline(
            logger,
            "stream.delta.merged",
            session_id=self.session_id,
            seq=event.seq,
            message_id=message_id,
            live_index=index,
        )

    def _apply_stored(self, event: Event, stored: AssistantMessage) -> None:
        index = self.find_live(stored.message_id, event.agent_id)
        if index < 0:
            entry = LogEntry.from_event(event)
            entry.stream_message_id = stored.message_id
            self.entries.append(entry)
            log_pipeline(
                logger,
                "stream.stored.appended",
                session_id=self.session_id,
                seq=event.seq,
                message_id=stored.message_id,
            )
            return
        live = self.entries[index]
        streamed = live.kind
        assert isinstance(streamed, AssistantMessage)
        content = stored.content or streamed.content
        thinking = _non_empty(stored.thinking) or _non_empty(streamed.thinking)
        self.entries[index] = LogEntry(
            seq=event.seq,
            session_id=event.session_id,
            agent_id=event.agent_id,
            timestamp_ms=event.timestamp_ms,
            kind=msgspec.structs.replace(stored, content=content, thinking=thinking),
            stream_message_id=stored.message_id or live.stream_message_id,
        )
        log_pipeline(
            logger,
            "stream.stored.replaced",
            session_id=self.session_id,
            seq=event.seq,
            message_id=stored.message_id,
            live_index=index,
        )


def order_events(events: Iterable[Event]) -> list[Event]:
    """Sort by sequence number when every event carries one.

    A batch with any unnumbered event keeps its arrival order.
    """
    ordered = list(events)
    if all(event.seq is not None for event in ordered):
        ordered.sort(key=lambda event: event.seq)
    return ordered


def merge_stream(events: Iterable[Event], *, session_id: str = "") -> list[LogEntry]:
    merger = StreamMerger(session_id)
    for event in order_events(events):
        merger.apply(event)
    return merger.entries
