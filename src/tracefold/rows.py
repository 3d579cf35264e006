"""Build depth-annotated rows and delegation groups from a session log."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field

from .delegation import DelegationTracker
from .logging import get_logger, log_pipeline
from .model import (
    SENTINEL_AGENT_ID,
    AgentId,
    DelegationGroup,
    LogEntry,
    Row,
    row_type_for,
)
from .schemas.events import (
    DelegationCancelled,
    DelegationCompleted,
    DelegationFailed,
    DelegationRequested,
    SessionForked,
    ToolCallEnd,
    ToolCallStart,
)
from .tools import (
    DEFAULT_DELEGATE_TOOLS,
    DEFAULT_TARGET_KEYS,
    delegate_target,
    infer_tool_name,
    tool_kind_and_title,
)
from .wire import parse_json_maybe

logger = get_logger(__name__)


@dataclass(slots=True)
class RowsResult:
    rows: list[Row]
    delegation_groups: dict[str, DelegationGroup]


@dataclass(slots=True)
class _RowFold:
    delegate_tools: Collection[str]
    target_keys: Sequence[str]
    sentinel_agent_id: AgentId
    rows: list[Row] = field(default_factory=list)
    tracker: DelegationTracker = field(default_factory=DelegationTracker)
    tool_rows: dict[str, Row] = field(default_factory=dict)
    last_message: dict[AgentId, Row] = field(default_factory=dict)
    current_message: Row | None = None
    last_timestamp_ms: int = 0

    def timestamp_of(self, entry: LogEntry) -> int:
        value = entry.timestamp_ms
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            self.last_timestamp_ms = int(value)
        return self.last_timestamp_ms

    def make_row(self, entry: LogEntry, index: int) -> Row:
        agent_id = entry.agent_id or self.sentinel_agent_id
        row_id = (
            f"{entry.session_id}:{entry.seq}"
            if entry.seq is not None
            else f"{entry.session_id}:#{index}"
        )
        return Row(
            id=row_id,
            seq=entry.seq,
            session_id=entry.session_id,
            agent_id=agent_id,
            timestamp_ms=self.timestamp_of(entry),
            type=row_type_for(entry.kind),
            kind=entry.kind,
            live=entry.live,
        )

    def message_anchor(self, agent_id: AgentId) -> Row | None:
        return self.last_message.get(agent_id) or self.current_message

    def nest(self, row: Row, group_key: str) -> DelegationGroup | None:
        group = self.tracker.groups.get(group_key)
        if group is None:
            return None
        row.nested_in = group_key
        group.child_rows.append(row)
        if group.agent_id is None:
            group.agent_id = row.agent_id
        return group

    def apply(self, entry: LogEntry, index: int) -> None:
        row = self.make_row(entry, index)
        agent_id = row.agent_id
        ts = row.timestamp_ms

        match entry.kind:
            case DelegationRequested(
                delegation_id=delegation_id,
                target_agent_id=target,
                objective=objective,
            ):
                self.tracker.request(
                    delegation_id,
                    origin_agent_id=agent_id,
                    target_agent_id=target,
                    objective=objective,
                    timestamp_ms=ts,
                )
            case SessionForked(
                child_session_id=child, origin=origin, fork_point_ref=ref
            ) if ref and origin in (None, "delegation"):
                self.tracker.fork(ref, child)
            case DelegationCompleted(delegation_id=delegation_id):
                self.tracker.finish(delegation_id, "completed", ts)
            case DelegationFailed(delegation_id=delegation_id) | DelegationCancelled(
                delegation_id=delegation_id
            ):
                self.tracker.finish(delegation_id, "failed", ts)
            case _:
                pass

        routed = self.tracker.route_for(agent_id)
        match entry.kind:
            case ToolCallStart():
                self.tool_call(row, entry.kind, routed)
            case ToolCallEnd():
                self.tool_result(row, entry.kind, routed)
            case _:
                self.plain(row, routed)

    def tool_call(self, row: Row, call: ToolCallStart, routed: str | None) -> None:
        key = call.tool_call_id or row.id
        arguments = parse_json_maybe(call.arguments)
        row.tool_name = infer_tool_name(call.tool_name, call.tool_call_id, call.description)
        row.tool_kind, row.title = tool_kind_and_title(
            row.tool_name or "tool", arguments, delegate_tools=self.delegate_tools
        )

        own = self.tracker.innermost(row.agent_id)
        routed_group = self.tracker.groups.get(routed) if routed else None
        parent = (
            (own.delegate_row if own else None)
            or (routed_group.delegate_row if routed_group else None)
            or self.message_anchor(row.agent_id)
        )
        row.parent_id = parent.id if parent else None
        row.depth = parent.depth + 1 if parent else 1

        # Delegate calls stay top-level so the turn can surface their group.
        if routed is not None and row.tool_kind != "delegate":
            self.nest(row, routed)
            row.delegation_group_id = routed

        if row.tool_kind == "delegate":
            row.is_delegate_call = True
            objective = None
            if isinstance(arguments, dict):
                objective = arguments.get("objective") or arguments.get("description")
            group = self.tracker.open_tool_call(
                key,
                row,
                target_agent_id=delegate_target(arguments, self.target_keys),
                objective=objective if isinstance(objective, str) else None,
            )
            row.delegation_group_id = group.id

        self.tool_rows[key] = row
        self.rows.append(row)

    def tool_result(self, row: Row, result: ToolCallEnd, routed: str | None) -> None:
        call_row = self.tool_rows.get(result.tool_call_id)
        if call_row is not None:
            call_row.result = result
            if call_row.is_delegate_call:
                self.tracker.close_tool_call(
                    result.tool_call_id,
                    is_error=result.is_error,
                    timestamp_ms=row.timestamp_ms,
                )
            return

        routed_group = self.tracker.groups.get(routed) if routed else None
        anchor = (
            routed_group.delegate_row if routed_group else None
        ) or self.message_anchor(row.agent_id)
        row.parent_id = anchor.id if anchor else None
        row.depth = anchor.depth + 1 if anchor else 1
        row.tool_name = infer_tool_name(result.tool_name, result.tool_call_id)
        row.result = result
        if routed is not None:
            self.nest(row, routed)
            row.delegation_group_id = routed
        log_pipeline(
            logger,
            "rows.tool_result.orphan",
            tool_call_id=result.tool_call_id,
            row_id=row.id,
        )
        self.rows.append(row)

    def plain(self, row: Row, routed: str | None) -> None:
        if routed is not None:
            group = self.nest(row, routed)
            anchor = group.delegate_row if group else None
            row.delegation_group_id = routed
            row.parent_id = anchor.id if anchor else None
            row.depth = anchor.depth + 1 if anchor else 1
        if row.type == "agent":
            self.last_message[row.agent_id] = row
            self.current_message = row
        self.rows.append(row)


def build_rows(
    entries: Iterable[LogEntry],
    *,
    delegate_tools: Collection[str] = DEFAULT_DELEGATE_TOOLS,
    target_keys: Sequence[str] = DEFAULT_TARGET_KEYS,
    sentinel_agent_id: AgentId = SENTINEL_AGENT_ID,
) -> RowsResult:
    fold = _RowFold(
        delegate_tools=delegate_tools,
        target_keys=target_keys,
        sentinel_agent_id=sentinel_agent_id,
    )
    for index, entry in enumerate(entries):
        try:
            fold.apply(entry, index)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "rows.entry.skipped",
                session_id=entry.session_id,
                seq=entry.seq,
                error=str(exc),
            )
    return RowsResult(rows=fold.rows, delegation_groups=fold.tracker.groups)
