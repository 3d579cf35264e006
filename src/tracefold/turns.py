"""Group top-level rows into conversational turns."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass

from .model import AgentId, DelegationGroup, Row, Turn


@dataclass(frozen=True, slots=True)
class ModelTimelineEntry:
    timestamp_ms: int
    provider: str
    model: str
    config_id: int | None = None

    @property
    def label(self) -> str:
        return f"{self.provider} / {self.model}"


@dataclass(slots=True)
class TurnsResult:
    turns: list[Turn]
    delegations: list[DelegationGroup]
    has_multiple_models: bool


def build_model_timeline(rows: Iterable[Row]) -> list[ModelTimelineEntry]:
    timeline: list[ModelTimelineEntry] = []
    for row in rows:
        change = row.provider_change
        if change is None or not change.provider or not change.model:
            continue
        timeline.append(
            ModelTimelineEntry(
                timestamp_ms=row.timestamp_ms,
                provider=change.provider,
                model=change.model,
                config_id=change.config_id,
            )
        )
    return timeline


def active_model_at(
    timeline: Sequence[ModelTimelineEntry], timestamp_ms: int
) -> ModelTimelineEntry | None:
    """Latest model change at or before ``timestamp_ms``.

    The timeline is in row order; the scan stops at the first later entry.
    """
    active: ModelTimelineEntry | None = None
    for entry in timeline:
        if entry.timestamp_ms > timestamp_ms:
            break
        active = entry
    return active


def has_multiple_models(timeline: Iterable[ModelTimelineEntry]) -> bool:
    return len({entry.label for entry in timeline}) > 1


def _open_turn(
    counter: int,
    row: Row,
    timeline: Sequence[ModelTimelineEntry],
    *,
    user_message: Row | None,
) -> Turn:
    active = active_model_at(timeline, row.timestamp_ms)
    return Turn(
        id=f"turn-{counter}",
        start_time=row.timestamp_ms,
        user_message=user_message,
        model_label=active.label if active else None,
        model_config_id=active.config_id if active else None,
    )


def build_turns(
    rows: Sequence[Row],
    delegation_groups: Mapping[str, DelegationGroup],
    *,
    thinking_agents: Collection[AgentId] = frozenset(),
) -> TurnsResult:
    timeline = build_model_timeline(rows)
    turns: list[Turn] = []
    current: Turn | None = None
    counter = 0

    for row in rows:
        if row.nested_in is not None:
            continue

        if row.type == "user":
            if current is not None:
                if current.end_time is None:
                    current.end_time = row.timestamp_ms
                current.is_active = False
                turns.append(current)
            current = _open_turn(counter, row, timeline, user_message=row)
            counter += 1
            continue

        if current is None:
            if row.type == "agent" and row.is_message:
                current = _open_turn(counter, row, timeline, user_message=None)
                counter += 1
                current.agent_messages.append(row)
                current.agent_id = row.agent_id
                current.end_time = row.timestamp_ms
            continue

        match row.type:
            case "agent":
                current.agent_messages.append(row)
                if current.agent_id is None:
                    current.agent_id = row.agent_id
                current.end_time = row.timestamp_ms
            case "tool_call":
                current.tool_calls.append(row)
                if row.is_delegate_call and row.delegation_group_id:
                    group = delegation_groups.get(row.delegation_group_id)
                    if group is not None:
                        current.delegations.append(group)
                current.end_time = row.timestamp_ms
            case "tool_result":
                current.end_time = row.timestamp_ms
            case "system":
                current.error = row.content
            case _:
                pass

        change = row.provider_change
        if change is not None and change.provider and change.model:
            current.model_label = f"{change.provider} / {change.model}"
            current.model_config_id = change.config_id

    if current is not None:
        owner = current.agent_id or (
            current.user_message.agent_id if current.user_message else None
        )
        if owner is not None and owner in thinking_agents:
            current.is_active = True
        else:
            current.is_active = owner is None and bool(thinking_agents)
        turns.append(current)

    delegations = sorted(delegation_groups.values(), key=lambda g: g.start_time)
    return TurnsResult(
        turns=turns,
        delegations=delegations,
        has_multiple_models=has_multiple_models(timeline),
    )


def build_delegation_turn(group: DelegationGroup) -> Turn:
    """Render a delegation group as its own turn over its child rows."""
    children = group.child_rows
    first = children[0].timestamp_ms if children else group.start_time
    last = children[-1].timestamp_ms if children else group.start_time
    active = active_model_at(build_model_timeline(children), first)
    return Turn(
        id=f"delegation-{group.id}",
        start_time=first,
        agent_messages=[
            row for row in children if row.type == "agent" and row.is_message
        ],
        tool_calls=[row for row in children if row.type == "tool_call"],
        agent_id=group.target_agent_id or group.agent_id,
        end_time=group.end_time if group.end_time is not None else last,
        is_active=group.status == "in_progress",
        model_label=active.label if active else None,
        model_config_id=active.config_id if active else None,
    )
