"""Reconstruct a read-only session view from a raw event list."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass

from .logging import get_logger, log_pipeline
from .model import (
    SENTINEL_AGENT_ID,
    AgentId,
    DelegationGroup,
    Event,
    LogEntry,
    Row,
    SessionId,
    Turn,
)
from .rows import build_rows
from .stream import merge_stream, order_events
from .timer import TimerReading, TimerState, replay_timers
from .tools import DEFAULT_DELEGATE_TOOLS, DEFAULT_TARGET_KEYS
from .turns import build_delegation_turn, build_turns

logger = get_logger(__name__)


@dataclass(slots=True)
class SessionView:
    session_id: SessionId
    entries: list[LogEntry]
    rows: list[Row]
    delegation_groups: dict[str, DelegationGroup]
    turns: list[Turn]
    delegations: list[DelegationGroup]
    has_multiple_models: bool
    timers: TimerState

    def delegation_turn(self, group_id: str) -> Turn | None:
        group = self.delegation_groups.get(group_id)
        return build_delegation_turn(group) if group is not None else None

    def timer_reading(
        self,
        now_ms: int,
        thinking_agents: Collection[AgentId] = frozenset(),
        conversation_complete: bool = False,
    ) -> TimerReading:
        return self.timers.reading(now_ms, thinking_agents, conversation_complete)


def _child_session_for(
    group: DelegationGroup,
    child_events: Mapping[SessionId, Sequence[Event]],
    main_session_id: SessionId,
) -> SessionId | None:
    if group.child_session_id is not None:
        if group.child_session_id in child_events:
            return group.child_session_id
        return None
    if group.target_agent_id is None:
        return None
    for session_id, events in child_events.items():
        if session_id == main_session_id:
            continue
        if any(event.agent_id == group.target_agent_id for event in events):
            return session_id
    return None


def reconstruct(
    events: Iterable[Event],
    *,
    session_id: SessionId | None = None,
    child_events: Mapping[SessionId, Sequence[Event]] | None = None,
    thinking_agents: Collection[AgentId] = frozenset(),
    delegate_tools: Collection[str] = DEFAULT_DELEGATE_TOOLS,
    target_keys: Sequence[str] = DEFAULT_TARGET_KEYS,
    sentinel_agent_id: AgentId = SENTINEL_AGENT_ID,
) -> SessionView:
    """Fold one session's events into rows, delegation groups, turns and timers.

    ``child_events`` maps child session ids to their events; a delegation
    group linked to one of them (by fork, or failing that by its target
    agent) gets the child session's own rows as ``child_rows``.
    """
    source = list(events)
    if session_id is None:
        session_id = source[0].session_id if source else ""
    entries = merge_stream(source, session_id=session_id)
    built = build_rows(
        entries,
        delegate_tools=delegate_tools,
        target_keys=target_keys,
        sentinel_agent_id=sentinel_agent_id,
    )

    if child_events:
        for group in built.delegation_groups.values():
            child_id = _child_session_for(group, child_events, session_id)
            if child_id is None or child_id == session_id:
                continue
            child = build_rows(
                merge_stream(child_events[child_id], session_id=child_id),
                delegate_tools=delegate_tools,
                target_keys=target_keys,
                sentinel_agent_id=sentinel_agent_id,
            )
            if not child.rows:
                continue
            group.child_session_id = child_id
            group.child_rows = child.rows
            log_pipeline(
                logger,
                "view.child.hydrated",
                group_id=group.id,
                child_session_id=child_id,
                rows=len(child.rows),
            )

    turns = build_turns(
        built.rows, built.delegation_groups, thinking_agents=thinking_agents
    )
    return SessionView(
        session_id=session_id,
        entries=entries,
        rows=built.rows,
        delegation_groups=built.delegation_groups,
        turns=turns.turns,
        delegations=turns.delegations,
        has_multiple_models=turns.has_multiple_models,
        timers=replay_timers(
            order_events(source), sentinel_agent_id=sentinel_agent_id
        ),
    )
