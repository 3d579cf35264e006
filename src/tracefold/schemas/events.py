"""Msgspec models for agent event payloads."""

from __future__ import annotations

from typing import Any, Literal, TypeAlias

import msgspec


class Usage(msgspec.Struct, frozen=True, forbid_unknown_fields=False):
    input_tokens: int = 0
    output_tokens: int = 0


class ExecutionMetrics(msgspec.Struct, frozen=True, forbid_unknown_fields=False):
    steps: int = 0
    turns: int = 0


class UserPrompt(
    msgspec.Struct,
    frozen=True,
    tag="user_prompt",
    tag_field="type",
    forbid_unknown_fields=False,
):
    content: str = ""
    message_id: str | None = None


class AssistantMessage(
    msgspec.Struct,
    frozen=True,
    tag="assistant_message",
    tag_field="type",
    forbid_unknown_fields=False,
):
    content: str = ""
    thinking: str | None = None
    message_id: str | None = None


class AssistantContentDelta(
    msgspec.Struct,
    frozen=True,
    tag="assistant_content_delta",
    tag_field="type",
    forbid_unknown_fields=False,
):
    content: str = ""
    message_id: str | None = None


class AssistantThinkingDelta(
    msgspec.Struct,
    frozen=True,
    tag="assistant_thinking_delta",
    tag_field="type",
    forbid_unknown_fields=False,
):
    content: str = ""
    message_id: str | None = None


class LlmRequestStart(
    msgspec.Struct,
    frozen=True,
    tag="llm_request_start",
    tag_field="type",
    forbid_unknown_fields=False,
):
    message_count: int = 0


class LlmRequestEnd(
    msgspec.Struct,
    frozen=True,
    tag="llm_request_end",
    tag_field="type",
    forbid_unknown_fields=False,
):
    finish_reason: str | None = None
    tool_calls: int = 0
    usage: Usage | None = None
    cost_usd: float | None = None
    cumulative_cost_usd: float | None = None
    context_tokens: int | None = None
    metrics: ExecutionMetrics | None = None


class ToolCallStart(
    msgspec.Struct,
    frozen=True,
    tag="tool_call_start",
    tag_field="type",
    forbid_unknown_fields=False,
):
    tool_call_id: str
    tool_name: str = ""
    arguments: Any = None
    description: str | None = None


class ToolCallEnd(
    msgspec.Struct,
    frozen=True,
    tag="tool_call_end",
    tag_field="type",
    forbid_unknown_fields=False,
):
    tool_call_id: str
    tool_name: str = ""
    is_error: bool = False
    result: Any = None


class DelegationRequested(
    msgspec.Struct,
    frozen=True,
    tag="delegation_requested",
    tag_field="type",
    forbid_unknown_fields=False,
):
    delegation_id: str
    target_agent_id: str | None = None
    objective: str | None = None


class DelegationCompleted(
    msgspec.Struct,
    frozen=True,
    tag="delegation_completed",
    tag_field="type",
    forbid_unknown_fields=False,
):
    delegation_id: str
    result: str | None = None


class DelegationFailed(
    msgspec.Struct,
    frozen=True,
    tag="delegation_failed",
    tag_field="type",
    forbid_unknown_fields=False,
):
    delegation_id: str
    error: str | None = None


class DelegationCancelled(
    msgspec.Struct,
    frozen=True,
    tag="delegation_cancelled",
    tag_field="type",
    forbid_unknown_fields=False,
):
    delegation_id: str


class SessionForked(
    msgspec.Struct,
    frozen=True,
    tag="session_forked",
    tag_field="type",
    forbid_unknown_fields=False,
):
    child_session_id: str
    parent_session_id: str | None = None
    target_agent_id: str | None = None
    origin: str | None = None
    fork_point_ref: str | None = None


class ProviderChanged(
    msgspec.Struct,
    frozen=True,
    tag="provider_changed",
    tag_field="type",
    forbid_unknown_fields=False,
):
    provider: str = ""
    model: str = ""
    config_id: int | None = None
    context_limit: int | None = None


class SystemErrorEvent(
    msgspec.Struct,
    frozen=True,
    tag="system_error",
    tag_field="type",
    forbid_unknown_fields=False,
):
    message: str = "Error"
    scope: Literal["agent", "session"] = "agent"


class Cancelled(
    msgspec.Struct,
    frozen=True,
    tag="cancelled",
    tag_field="type",
    forbid_unknown_fields=False,
):
    pass


EventKind: TypeAlias = (
    UserPrompt
    | AssistantMessage
    | AssistantContentDelta
    | AssistantThinkingDelta
    | LlmRequestStart
    | LlmRequestEnd
    | ToolCallStart
    | ToolCallEnd
    | DelegationRequested
    | DelegationCompleted
    | DelegationFailed
    | DelegationCancelled
    | SessionForked
    | ProviderChanged
    | SystemErrorEvent
    | Cancelled
)


class WireEvent(msgspec.Struct, forbid_unknown_fields=False):
    """Envelope as delivered by the transport, before payload validation."""

    kind: dict[str, Any]
    seq: Any = None
    session_id: Any = None
    agent_id: Any = None
    timestamp: Any = None
    timestamp_ms: Any = None



def kind_name(kind: EventKind) -> str:
    return str(type(kind).__struct_config__.tag)
