"""Per-agent and session statistics derived from rows."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from .model import AgentId, DelegationGroup, Row

PRIMARY_AGENT_ID: AgentId = "primary"


@dataclass(slots=True)
class AgentStats:
    agent_id: AgentId
    message_count: int = 0
    tool_call_count: int = 0
    tool_result_count: int = 0
    tool_breakdown: dict[str, int] = field(default_factory=dict)
    cost_usd: float = 0.0
    current_context_tokens: int = 0
    max_context_tokens: int | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    steps: int = 0
    turns: int = 0


@dataclass(frozen=True, slots=True)
class SessionStats:
    total_cost_usd: float
    total_messages: int
    total_tool_calls: int
    start_timestamp_ms: int | None
    total_steps: int
    total_turns: int


@dataclass(frozen=True, slots=True)
class CalculatedStats:
    session: SessionStats
    per_agent: list[AgentStats]


@dataclass(frozen=True, slots=True)
class DelegationStats:
    context_tokens: int
    context_limit: int | None
    context_percent: int | None
    tool_call_count: int
    message_count: int
    cost_usd: float
    input_tokens: int
    output_tokens: int
    steps: int
    turns: int


def _agent_order(stats: AgentStats) -> tuple[int, str]:
    return (0 if stats.agent_id == PRIMARY_AGENT_ID else 1, stats.agent_id)


def _apply_usage(stats: AgentStats, row: Row) -> float | None:
    """Fold request/provider fields into ``stats``; returns the cumulative cost."""
    change = row.provider_change
    if change is not None and change.context_limit is not None:
        stats.max_context_tokens = change.context_limit
    end = row.request_end
    if end is None:
        return None
    if end.context_tokens is not None:
        stats.current_context_tokens = end.context_tokens
    if end.metrics is not None:
        stats.steps = end.metrics.steps
        stats.turns = end.metrics.turns
    if end.usage is not None:
        stats.input_tokens += end.usage.input_tokens
        stats.output_tokens += end.usage.output_tokens
    if end.cost_usd is not None:
        stats.cost_usd += end.cost_usd
    return end.cumulative_cost_usd


def calculate_stats(rows: Iterable[Row]) -> CalculatedStats:
    per_agent: dict[AgentId, AgentStats] = {}
    total_messages = 0
    total_tool_calls = 0
    latest_cumulative: float | None = None
    start: int | None = None

    for row in rows:
        if row.type == "system":
            continue
        if start is None:
            start = row.timestamp_ms
        stats = per_agent.get(row.agent_id)
        if stats is None:
            stats = per_agent[row.agent_id] = AgentStats(agent_id=row.agent_id)

        match row.type:
            case "user" | "agent":
                stats.message_count += 1
                total_messages += 1
            case "tool_call":
                stats.tool_call_count += 1
                total_tool_calls += 1
                name = row.tool_name or "unknown"
                stats.tool_breakdown[name] = stats.tool_breakdown.get(name, 0) + 1
                if row.result is not None:
                    stats.tool_result_count += 1
            case "tool_result":
                stats.tool_result_count += 1
            case _:
                pass

        cumulative = _apply_usage(stats, row)
        if cumulative is not None:
            latest_cumulative = cumulative

    ordered = sorted(per_agent.values(), key=_agent_order)
    summed = sum(stats.cost_usd for stats in ordered)
    lead = ordered[0] if ordered else None
    session = SessionStats(
        total_cost_usd=latest_cumulative if latest_cumulative is not None else summed,
        total_messages=total_messages,
        total_tool_calls=total_tool_calls,
        start_timestamp_ms=start,
        total_steps=lead.steps if lead else 0,
        total_turns=lead.turns if lead else 0,
    )
    return CalculatedStats(session=session, per_agent=ordered)


def delegation_stats(group: DelegationGroup) -> DelegationStats:
    stats = AgentStats(agent_id=group.target_agent_id or group.agent_id or "")
    for row in group.child_rows:
        match row.type:
            case "agent":
                stats.message_count += 1
            case "tool_call":
                stats.tool_call_count += 1
            case _:
                pass
        _apply_usage(stats, row)

    limit = stats.max_context_tokens
    percent = None
    if limit:
        percent = min(100, round(stats.current_context_tokens / limit * 100))
    return DelegationStats(
        context_tokens=stats.current_context_tokens,
        context_limit=limit,
        context_percent=percent,
        tool_call_count=stats.tool_call_count,
        message_count=stats.message_count,
        cost_usd=stats.cost_usd,
        input_tokens=stats.input_tokens,
        output_tokens=stats.output_tokens,
        steps=stats.steps,
        turns=stats.turns,
    )
