"""Track which agents have a model request in flight."""

from __future__ import annotations

from dataclasses import dataclass, field

from .model import SENTINEL_AGENT_ID, AgentId, Event, SessionId
from .schemas.events import (
    Cancelled,
    LlmRequestEnd,
    LlmRequestStart,
    SystemErrorEvent,
    UserPrompt,
)

FINISH_REASON_TOOL_CALLS = "toolcalls"


def _normalize_reason(reason: str | None) -> str:
    # "ToolCalls" and "tool_calls" are both seen on the wire
    return (reason or "").strip().replace("_", "").lower()


@dataclass(slots=True)
class ThinkingState:
    main_session_id: SessionId | None = None
    sentinel_agent_id: AgentId = SENTINEL_AGENT_ID
    by_session: dict[SessionId, set[AgentId]] = field(default_factory=dict)
    agents: set[AgentId] = field(default_factory=set)
    conversation_complete: bool = False

    def thinking_in(self, session_id: SessionId) -> frozenset[AgentId]:
        return frozenset(self.by_session.get(session_id, ()))

    @property
    def is_thinking(self) -> bool:
        return bool(self.agents)

    def apply(self, event: Event) -> None:
        if self.main_session_id is None:
            self.main_session_id = event.session_id
        agent_id = event.agent_id or self.sentinel_agent_id
        is_main = event.session_id == self.main_session_id

        match event.kind:
            case LlmRequestStart():
                self.by_session.setdefault(event.session_id, set()).add(agent_id)
                self.agents.add(agent_id)
                if is_main:
                    self.conversation_complete = False
            case LlmRequestEnd(finish_reason=reason):
                normalized = _normalize_reason(reason)
                if normalized == FINISH_REASON_TOOL_CALLS:
                    return
                emptied = self._stop(event.session_id, agent_id)
                if normalized == "stop" and emptied and is_main:
                    self.conversation_complete = True
            case UserPrompt():
                if is_main:
                    self.conversation_complete = False
            case SystemErrorEvent() | Cancelled():
                self._stop(event.session_id, agent_id)
            case _:
                pass

    def _stop(self, session_id: SessionId, agent_id: AgentId) -> bool:
        """Drop ``agent_id`` from the session; True when the session emptied."""
        session_agents = self.by_session.get(session_id)
        self.agents.discard(agent_id)
        if session_agents is None:
            return True
        session_agents.discard(agent_id)
        if session_agents:
            return False
        del self.by_session[session_id]
        return True
