"""Event factory helpers for building session streams."""

from __future__ import annotations

from typing import Any

from .model import AgentId, Event, SessionId
from .schemas.events import (
    AssistantContentDelta,
    AssistantMessage,
    AssistantThinkingDelta,
    Cancelled,
    DelegationCancelled,
    DelegationCompleted,
    DelegationFailed,
    DelegationRequested,
    EventKind,
    ExecutionMetrics,
    LlmRequestEnd,
    LlmRequestStart,
    ProviderChanged,
    SessionForked,
    SystemErrorEvent,
    ToolCallEnd,
    ToolCallStart,
    Usage,
    UserPrompt,
)


class EventFactory:
    """Stamps sequence numbers and timestamps onto events of one session.

    Timestamps default to the previous event's timestamp, so a stream can be
    written as a sequence of ``at=`` checkpoints.
    """

    __slots__ = ("session_id", "agent_id", "_seq", "_now_ms")

    def __init__(
        self,
        session_id: SessionId,
        agent_id: AgentId = "primary",
        *,
        start_seq: int = 1,
        start_ms: int = 0,
    ) -> None:
        self.session_id = session_id
        self.agent_id = agent_id
        self._seq = start_seq - 1
        self._now_ms = start_ms

    @property
    def last_seq(self) -> int:
        return self._seq

    def event(
        self,
        kind: EventKind,
        *,
        at: int | None = None,
        agent: AgentId | None = None,
        seq: int | None = None,
    ) -> Event:
        if at is not None:
            self._now_ms = at
        if seq is None:
            self._seq += 1
            seq = self._seq
        else:
            self._seq = max(self._seq, seq)
        return Event(
            seq=seq,
            session_id=self.session_id,
            agent_id=agent or self.agent_id,
            timestamp_ms=self._now_ms,
            kind=kind,
        )

    def prompt(self, content: str = "", **kw: Any) -> Event:
        return self.event(UserPrompt(content=content), **kw)

    def content_delta(
        self, content: str, *, message_id: str | None = None, **kw: Any
    ) -> Event:
        return self.event(
            AssistantContentDelta(content=content, message_id=message_id), **kw
        )

    def thinking_delta(
        self, content: str, *, message_id: str | None = None, **kw: Any
    ) -> Event:
        return self.event(
            AssistantThinkingDelta(content=content, message_id=message_id), **kw
        )

    def message(
        self,
        content: str = "",
        *,
        thinking: str | None = None,
        message_id: str | None = None,
        **kw: Any,
    ) -> Event:
        return self.event(
            AssistantMessage(content=content, thinking=thinking, message_id=message_id),
            **kw,
        )

    def llm_start(self, *, message_count: int = 0, **kw: Any) -> Event:
        return self.event(LlmRequestStart(message_count=message_count), **kw)

    def llm_end(
        self,
        finish_reason: str | None = "stop",
        *,
        cost_usd: float | None = None,
        cumulative_cost_usd: float | None = None,
        context_tokens: int | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        steps: int | None = None,
        turns: int | None = None,
        **kw: Any,
    ) -> Event:
        usage = None
        if input_tokens is not None or output_tokens is not None:
            usage = Usage(input_tokens=input_tokens or 0, output_tokens=output_tokens or 0)
        metrics = None
        if steps is not None or turns is not None:
            metrics = ExecutionMetrics(steps=steps or 0, turns=turns or 0)
        return self.event(
            LlmRequestEnd(
                finish_reason=finish_reason,
                usage=usage,
                cost_usd=cost_usd,
                cumulative_cost_usd=cumulative_cost_usd,
                context_tokens=context_tokens,
                metrics=metrics,
            ),
            **kw,
        )

    def tool_start(
        self,
        tool_call_id: str,
        tool_name: str,
        arguments: Any = None,
        **kw: Any,
    ) -> Event:
        return self.event(
            ToolCallStart(
                tool_call_id=tool_call_id, tool_name=tool_name, arguments=arguments
            ),
            **kw,
        )

    def tool_end(
        self,
        tool_call_id: str,
        tool_name: str = "",
        result: Any = None,
        *,
        is_error: bool = False,
        **kw: Any,
    ) -> Event:
        return self.event(
            ToolCallEnd(
                tool_call_id=tool_call_id,
                tool_name=tool_name,
                result=result,
                is_error=is_error,
            ),
            **kw,
        )

    def delegation_requested(
        self,
        delegation_id: str,
        target_agent_id: str | None = None,
        objective: str | None = None,
        **kw: Any,
    ) -> Event:
        return self.event(
            DelegationRequested(
                delegation_id=delegation_id,
                target_agent_id=target_agent_id,
                objective=objective,
            ),
            **kw,
        )

    def delegation_completed(
        self, delegation_id: str, result: str | None = None, **kw: Any
    ) -> Event:
        return self.event(
            DelegationCompleted(delegation_id=delegation_id, result=result), **kw
        )

    def delegation_failed(
        self, delegation_id: str, error: str | None = None, **kw: Any
    ) -> Event:
        return self.event(DelegationFailed(delegation_id=delegation_id, error=error), **kw)

    def delegation_cancelled(self, delegation_id: str, **kw: Any) -> Event:
        return self.event(DelegationCancelled(delegation_id=delegation_id), **kw)

    def session_forked(
        self,
        child_session_id: str,
        *,
        delegation_id: str | None = None,
        target_agent_id: str | None = None,
        **kw: Any,
    ) -> Event:
        return self.event(
            SessionForked(
                child_session_id=child_session_id,
                parent_session_id=self.session_id,
                target_agent_id=target_agent_id,
                origin="delegation" if delegation_id else "user",
                fork_point_ref=delegation_id,
            ),
            **kw,
        )

    def provider_changed(
        self,
        provider: str,
        model: str,
        *,
        config_id: int | None = None,
        context_limit: int | None = None,
        **kw: Any,
    ) -> Event:
        return self.event(
            ProviderChanged(
                provider=provider,
                model=model,
                config_id=config_id,
                context_limit=context_limit,
            ),
            **kw,
        )

    def error(
        self, message: str = "Error", *, session_wide: bool = False, **kw: Any
    ) -> Event:
        scope = "session" if session_wide else "agent"
        return self.event(SystemErrorEvent(message=message, scope=scope), **kw)

    def cancelled(self, **kw: Any) -> Event:
        return self.event(Cancelled(), **kw)
