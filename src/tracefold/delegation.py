"""Delegation lifecycle tracking.

A delegation is reported twice: once as the delegating agent's tool call
(keyed by tool-call id) and once as a ``delegation_requested`` event (keyed by
delegation id). Either can arrive first. The tracker correlates them through
two tables instead of a linked graph:

* ``pending`` maps a target agent to the FIFO of delegate tool calls still
  waiting for their request event (and ``unclaimed`` the reverse case, requests
  waiting for their tool call);
* ``active`` maps a target agent to a stack of its open groups; its rows
  route into the newest one.

Each originating agent also owns a stack of open delegations, so a delegation
opened while another is open nests one level deeper and closing the inner one
leaves the outer one open.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from .logging import get_logger, log_pipeline
from .model import AgentId, DelegationGroup, DelegationStatus, Row

logger = get_logger(__name__)


@dataclass(slots=True)
class DelegationTracker:
    groups: dict[str, DelegationGroup] = field(default_factory=dict)
    pending: dict[AgentId, deque[str]] = field(default_factory=dict)
    unclaimed: dict[AgentId, deque[str]] = field(default_factory=dict)
    active: dict[AgentId, list[str]] = field(default_factory=dict)
    open_stacks: dict[AgentId, list[str]] = field(default_factory=dict)
    by_delegation_id: dict[str, str] = field(default_factory=dict)
    by_tool_call_id: dict[str, str] = field(default_factory=dict)
    pending_forks: dict[str, str] = field(default_factory=dict)

    def group_for_delegation(self, delegation_id: str) -> DelegationGroup | None:
        key = self.by_delegation_id.get(delegation_id, delegation_id)
        return self.groups.get(key)

    def group_for_tool_call(self, tool_call_id: str) -> DelegationGroup | None:
        key = self.by_tool_call_id.get(tool_call_id)
        return self.groups.get(key) if key is not None else None

    def route_for(self, agent_id: AgentId) -> str | None:
        stack = self.active.get(agent_id)
        return stack[-1] if stack else None

    def innermost(self, agent_id: AgentId) -> DelegationGroup | None:
        stack = self.open_stacks.get(agent_id)
        if not stack:
            return None
        return self.groups.get(stack[-1])

    def open_tool_call(
        self,
        tool_call_id: str,
        row: Row,
        *,
        target_agent_id: AgentId | None,
        objective: str | None,
    ) -> DelegationGroup:
        """Register a delegate tool call, adopting an earlier request if one waits."""
        key = tool_call_id
        if target_agent_id is not None:
            key = _take(self.unclaimed, target_agent_id) or tool_call_id
        group = self.groups.get(key)
        if group is None:
            group = DelegationGroup(
                id=key,
                delegating_tool_call_id=tool_call_id,
                start_time=row.timestamp_ms,
            )
            self.groups[key] = group
            if target_agent_id is not None:
                self.pending.setdefault(target_agent_id, deque()).append(key)
        else:
            log_pipeline(
                logger,
                "delegation.tool_call.adopted",
                group_id=key,
                tool_call_id=tool_call_id,
            )
        group.delegating_tool_call_id = tool_call_id
        group.delegate_row = row
        group.origin_agent_id = row.agent_id
        group.target_agent_id = target_agent_id or group.target_agent_id
        group.objective = group.objective or objective
        self.by_tool_call_id[tool_call_id] = key
        if not group.is_terminal:
            self.open_stacks.setdefault(row.agent_id, []).append(key)
        return group

    def request(
        self,
        delegation_id: str,
        *,
        origin_agent_id: AgentId,
        target_agent_id: AgentId | None,
        objective: str | None,
        timestamp_ms: int,
    ) -> DelegationGroup:
        key = self.by_delegation_id.get(delegation_id)
        if key is None and target_agent_id is not None:
            key = _take(self.pending, target_agent_id)
        claimed = key is not None
        key = key or delegation_id
        self.by_delegation_id[delegation_id] = key
        group = self.groups.get(key)
        if group is None:
            group = DelegationGroup(
                id=key,
                delegating_tool_call_id=None,
                start_time=timestamp_ms,
                origin_agent_id=origin_agent_id,
            )
            self.groups[key] = group
        if not claimed and group.delegating_tool_call_id is None and target_agent_id:
            self.unclaimed.setdefault(target_agent_id, deque()).append(key)
        group.delegation_id = delegation_id
        group.target_agent_id = target_agent_id or group.target_agent_id
        group.objective = objective or group.objective
        group.start_time = timestamp_ms
        if group.target_agent_id and not group.is_terminal:
            stack = self.active.setdefault(group.target_agent_id, [])
            if key in stack:
                stack.remove(key)
            stack.append(key)
        child_session_id = self.pending_forks.pop(delegation_id, None)
        if child_session_id is not None:
            group.child_session_id = child_session_id
        log_pipeline(
            logger,
            "delegation.requested",
            group_id=key,
            delegation_id=delegation_id,
            target_agent_id=target_agent_id,
            correlated=claimed,
        )
        return group

    def fork(self, delegation_id: str, child_session_id: str) -> DelegationGroup | None:
        group = self.group_for_delegation(delegation_id)
        if group is None:
            self.pending_forks[delegation_id] = child_session_id
            return None
        group.child_session_id = child_session_id
        return group

    def finish(
        self,
        delegation_id: str,
        status: DelegationStatus,
        timestamp_ms: int,
    ) -> DelegationGroup | None:
        group = self.group_for_delegation(delegation_id)
        if group is None:
            logger.debug(
                "delegation.finish.unknown", delegation_id=delegation_id, status=status
            )
            return None
        if not group.is_terminal or group.end_time is None:
            group.end_time = timestamp_ms
        self._close(group, status)
        return group

    def close_tool_call(
        self, tool_call_id: str, *, is_error: bool, timestamp_ms: int
    ) -> DelegationGroup | None:
        """Handle the delegate tool call's result.

        Only the innermost open delegation of the calling agent is popped. The
        delegate tool returns as soon as the delegation is accepted, so a
        successful result leaves the status to the delegation events; a failed
        result marks the group failed wherever it sits in the stack.
        """
        group = self.group_for_tool_call(tool_call_id)
        if group is None:
            return None
        innermost = (
            self.innermost(group.origin_agent_id) if group.origin_agent_id else None
        )
        if innermost is group:
            self._pop(group)
        if is_error and not group.is_terminal:
            if group.end_time is None:
                group.end_time = timestamp_ms
            self._close(group, "failed")
        return group

    def _close(self, group: DelegationGroup, status: DelegationStatus) -> None:
        if group.status == "in_progress":
            group.status = status
        if group.target_agent_id:
            _discard(self.active, group.target_agent_id, group.id)
        self._pop(group)
        log_pipeline(
            logger,
            "delegation.closed",
            group_id=group.id,
            status=group.status,
        )

    def _pop(self, group: DelegationGroup) -> None:
        if group.origin_agent_id is None:
            return
        _discard(self.open_stacks, group.origin_agent_id, group.id)


def _take(queues: dict[AgentId, deque[str]], agent_id: AgentId) -> str | None:
    queue = queues.get(agent_id)
    if not queue:
        return None
    key = queue.popleft()
    if not queue:
        del queues[agent_id]
    return key


def _discard(stacks: dict[AgentId, list[str]], agent_id: AgentId, key: str) -> None:
    stack = stacks.get(agent_id)
    if stack and key in stack:
        stack.remove(key)
        if not stack:
            del stacks[agent_id]
