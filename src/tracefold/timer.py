"""Session and per-agent elapsed-time state machine.

The machine is a fold over the raw event stream. Wall-clock time only enters
through ``TimerState.reading(now_ms, ...)``, so replaying the same events always
settles to the same state.

Per agent: ``idle -> working -> paused (delegating) -> working -> paused
(awaiting user) -> ...``. The global timer starts on the first prompt and,
once no agent is left working, pauses at the timestamp of the last event seen
overall, idle tail included.
"""

from __future__ import annotations

import copy
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from .logging import get_logger, log_pipeline
from .model import SENTINEL_AGENT_ID, AgentId, Event
from .schemas.events import (
    Cancelled,
    DelegationCancelled,
    DelegationCompleted,
    DelegationFailed,
    DelegationRequested,
    LlmRequestEnd,
    SystemErrorEvent,
    UserPrompt,
)

logger = get_logger(__name__)

FINISH_REASON_STOP = "stop"


@dataclass(slots=True)
class AgentTimer:
    accumulated_ms: int = 0
    running_since_ms: int | None = None
    open_delegation_ids: set[str] = field(default_factory=set)

    @property
    def is_running(self) -> bool:
        return self.running_since_ms is not None

    def start(self, at_ms: int) -> None:
        if self.running_since_ms is None:
            self.running_since_ms = at_ms

    def pause(self, at_ms: int) -> None:
        if self.running_since_ms is None:
            return
        self.accumulated_ms += max(0, at_ms - self.running_since_ms)
        self.running_since_ms = None

    def elapsed(self, now_ms: int) -> int:
        if self.running_since_ms is None:
            return self.accumulated_ms
        return self.accumulated_ms + max(0, now_ms - self.running_since_ms)


@dataclass(slots=True)
class GlobalTimer:
    has_started: bool = False
    accumulated_ms: int = 0
    running_since_ms: int | None = None

    @property
    def is_running(self) -> bool:
        return self.running_since_ms is not None

    def start(self, at_ms: int) -> None:
        self.has_started = True
        if self.running_since_ms is None:
            self.running_since_ms = at_ms

    def pause(self, at_ms: int) -> None:
        if self.running_since_ms is None:
            return
        self.accumulated_ms += max(0, at_ms - self.running_since_ms)
        self.running_since_ms = None

    def elapsed(self, now_ms: int) -> int:
        if self.running_since_ms is None:
            return self.accumulated_ms
        return self.accumulated_ms + max(0, now_ms - self.running_since_ms)


@dataclass(frozen=True, slots=True)
class TimerReading:
    global_elapsed_ms: int
    agent_elapsed_ms: dict[AgentId, int]
    is_session_active: bool


@dataclass(slots=True)
class TimerState:
    global_timer: GlobalTimer = field(default_factory=GlobalTimer)
    agents: dict[AgentId, AgentTimer] = field(default_factory=dict)
    last_event_ms: int = 0

    @property
    def any_agent_running(self) -> bool:
        return any(timer.is_running for timer in self.agents.values())

    @property
    def is_running(self) -> bool:
        return self.global_timer.is_running or self.any_agent_running

    def agent(self, agent_id: AgentId) -> AgentTimer:
        timer = self.agents.get(agent_id)
        if timer is None:
            timer = self.agents[agent_id] = AgentTimer()
        return timer

    def global_elapsed(self, now_ms: int) -> int:
        return self.global_timer.elapsed(now_ms)

    def agent_elapsed(self, now_ms: int) -> dict[AgentId, int]:
        return {
            agent_id: timer.elapsed(now_ms) for agent_id, timer in self.agents.items()
        }

    def reading(
        self,
        now_ms: int,
        thinking_agents: Collection[AgentId] = frozenset(),
        conversation_complete: bool = False,
    ) -> TimerReading:
        return TimerReading(
            global_elapsed_ms=self.global_elapsed(now_ms),
            agent_elapsed_ms=self.agent_elapsed(now_ms),
            is_session_active=len(thinking_agents) > 0 and not conversation_complete,
        )


class TimerMachine:
    __slots__ = ("_state", "_last_seq", "_last_ts", "sentinel_agent_id")

    def __init__(self, *, sentinel_agent_id: AgentId = SENTINEL_AGENT_ID) -> None:
        self._state = TimerState()
        self._last_seq: dict[str, int] = {}
        self._last_ts: int | None = None
        self.sentinel_agent_id = sentinel_agent_id

    def _timestamp(self, event: Event) -> int:
        value = event.timestamp_ms
        if isinstance(value, int) and not isinstance(value, bool):
            self._last_ts = value
        elif self._last_ts is None:
            self._last_ts = 0
        return self._last_ts

    def apply(self, event: Event) -> bool:
        seq = event.seq
        if seq is not None:
            last = self._last_seq.get(event.session_id)
            if last is not None and seq <= last:
                return False
            self._last_seq[event.session_id] = seq

        state = self._state
        at_ms = self._timestamp(event)
        state.last_event_ms = max(state.last_event_ms, at_ms)
        agent_id = event.agent_id or self.sentinel_agent_id
        timer = state.agent(agent_id)

        match event.kind:
            case UserPrompt():
                state.global_timer.start(at_ms)
                if not timer.open_delegation_ids:
                    timer.start(at_ms)
            case DelegationRequested(delegation_id=delegation_id):
                timer.open_delegation_ids.add(delegation_id)
                timer.pause(at_ms)
            case (
                DelegationCompleted(delegation_id=delegation_id)
                | DelegationFailed(delegation_id=delegation_id)
                | DelegationCancelled(delegation_id=delegation_id)
            ):
                owner = self._delegation_owner(agent_id, delegation_id)
                if owner is not None:
                    owner.open_delegation_ids.discard(delegation_id)
                    if not owner.open_delegation_ids and not owner.is_running:
                        owner.start(at_ms)
            case LlmRequestEnd(finish_reason=reason):
                if (
                    timer.is_running
                    and not timer.open_delegation_ids
                    and (reason or "").lower() == FINISH_REASON_STOP
                ):
                    timer.pause(at_ms)
            case SystemErrorEvent(scope="session"):
                for other in state.agents.values():
                    other.pause(at_ms)
            case SystemErrorEvent() | Cancelled():
                timer.pause(at_ms)
            case _:
                pass

        log_pipeline(
            logger,
            "timer.applied",
            seq=seq,
            agent_id=agent_id,
            kind=event.kind_name,
            running=timer.is_running,
        )
        return True

    def _delegation_owner(
        self, agent_id: AgentId, delegation_id: str
    ) -> AgentTimer | None:
        timer = self._state.agents.get(agent_id)
        if timer is not None and delegation_id in timer.open_delegation_ids:
            return timer
        for other in self._state.agents.values():
            if delegation_id in other.open_delegation_ids:
                return other
        return None

    def settle(self) -> TimerState:
        """Settled copy of the current state; the machine keeps folding."""
        state = copy.deepcopy(self._state)
        if not state.any_agent_running and state.global_timer.is_running:
            state.global_timer.pause(state.last_event_ms)
        return state


def replay_timers(
    events: Iterable[Event], *, sentinel_agent_id: AgentId = SENTINEL_AGENT_ID
) -> TimerState:
    machine = TimerMachine(sentinel_agent_id=sentinel_agent_id)
    for event in events:
        machine.apply(event)
    return machine.settle()
