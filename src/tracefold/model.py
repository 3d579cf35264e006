"""Tracefold domain model types (events, rows, delegation groups, turns)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, TypeAlias

from .schemas.events import (
    AssistantMessage,
    EventKind,
    LlmRequestEnd,
    ProviderChanged,
    SystemErrorEvent,
    ToolCallEnd,
    ToolCallStart,
    UserPrompt,
    kind_name,
)

AgentId: TypeAlias = str
SessionId: TypeAlias = str

RowType: TypeAlias = Literal["user", "agent", "tool_call", "tool_result", "event", "system"]
DelegationStatus: TypeAlias = Literal["in_progress", "completed", "failed"]
ToolKind: TypeAlias = Literal[
    "command",
    "tool",
    "file_change",
    "web_search",
    "note",
    "delegate",
]

SENTINEL_AGENT_ID: AgentId = "unknown"


@dataclass(frozen=True, slots=True)
class Event:
    seq: int | None
    session_id: SessionId
    agent_id: AgentId | None
    timestamp_ms: int | None
    kind: EventKind

    @property
    def kind_name(self) -> str:
        return kind_name(self.kind)


@dataclass(slots=True)
class LogEntry:
    """One item of a session log after streaming deltas were folded in.

    A live accumulator carries an ``AssistantMessage`` payload assembled from
    deltas; the terminal stored message replaces it in place.
    """

    seq: int | None
    session_id: SessionId
    agent_id: AgentId | None
    timestamp_ms: int | None
    kind: EventKind
    live: bool = False
    stream_message_id: str | None = None

    @classmethod
    def from_event(cls, event: Event) -> LogEntry:
        return cls(
            seq=event.seq,
            session_id=event.session_id,
            agent_id=event.agent_id,
            timestamp_ms=event.timestamp_ms,
            kind=event.kind,
        )


def row_type_for(kind: EventKind) -> RowType:
    match kind:
        case UserPrompt():
            return "user"
        case AssistantMessage():
            return "agent"
        case ToolCallStart():
            return "tool_call"
        case ToolCallEnd():
            return "tool_result"
        case SystemErrorEvent():
            return "system"
        case _:
            return "event"


@dataclass(slots=True)
class Row:
    id: str
    seq: int | None
    session_id: SessionId
    agent_id: AgentId
    timestamp_ms: int
    type: RowType
    kind: EventKind
    depth: int = 0
    parent_id: str | None = None
    tool_name: str | None = None
    tool_kind: ToolKind | None = None
    title: str | None = None
    is_delegate_call: bool = False
    delegation_group_id: str | None = None
    nested_in: str | None = None
    result: ToolCallEnd | None = None
    live: bool = False

    @property
    def is_message(self) -> bool:
        return isinstance(self.kind, (UserPrompt, AssistantMessage))

    @property
    def content(self) -> str:
        match self.kind:
            case UserPrompt(content=content) | AssistantMessage(content=content):
                return content
            case SystemErrorEvent(message=message):
                return message
            case ToolCallStart(tool_name=name):
                return name or "tool_call"
            case _:
                return f"Event: {kind_name(self.kind)}"

    @property
    def thinking(self) -> str | None:
        if isinstance(self.kind, AssistantMessage):
            return self.kind.thinking
        return None

    @property
    def status(self) -> DelegationStatus | None:
        if self.type != "tool_call":
            return None
        if self.result is None:
            return "in_progress"
        return "failed" if self.result.is_error else "completed"

    @property
    def tool_call_id(self) -> str | None:
        if isinstance(self.kind, (ToolCallStart, ToolCallEnd)):
            return self.kind.tool_call_id
        return None

    @property
    def provider_change(self) -> ProviderChanged | None:
        if isinstance(self.kind, ProviderChanged):
            return self.kind
        return None

    @property
    def request_end(self) -> LlmRequestEnd | None:
        if isinstance(self.kind, LlmRequestEnd):
            return self.kind
        return None


@dataclass(slots=True)
class DelegationGroup:
    id: str
    delegating_tool_call_id: str | None
    start_time: int
    delegation_id: str | None = None
    target_agent_id: AgentId | None = None
    origin_agent_id: AgentId | None = None
    agent_id: AgentId | None = None
    objective: str | None = None
    child_session_id: SessionId | None = None
    status: DelegationStatus = "in_progress"
    end_time: int | None = None
    delegate_row: Row | None = None
    child_rows: list[Row] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != "in_progress"


@dataclass(slots=True)
class Turn:
    id: str
    start_time: int
    user_message: Row | None = None
    agent_messages: list[Row] = field(default_factory=list)
    tool_calls: list[Row] = field(default_factory=list)
    delegations: list[DelegationGroup] = field(default_factory=list)
    agent_id: AgentId | None = None
    end_time: int | None = None
    is_active: bool = True
    model_label: str | None = None
    model_config_id: int | None = None
    error: str | None = None
