from dataclasses import replace

from tests.factories import delegate_args, nested_delegations, single_delegation
from tracefold.events import EventFactory
from tracefold.model import LogEntry, Row
from tracefold.rows import build_rows
from tracefold.stream import merge_stream


def _rows(events, **kwargs):
    return build_rows(merge_stream(events), **kwargs)


def _by_content(rows: list[Row], content: str) -> Row:
    return next(row for row in rows if row.is_message and row.content == content)


def test_tool_result_merges_into_its_call_row(factory: EventFactory) -> None:
    result = _rows(
        [
            factory.prompt("hi", at=1000),
            factory.message("looking", at=1100),
            factory.tool_start("t1", "bash", {"command": "ls"}, at=1200),
            factory.tool_end("t1", "bash", "a.txt", at=1300),
        ]
    )

    assert [row.type for row in result.rows] == ["user", "agent", "tool_call"]
    call = result.rows[2]
    assert call.result is not None
    assert call.result.result == "a.txt"
    assert call.status == "completed"
    assert call.tool_kind == "command"
    assert call.title == "ls"
    assert call.parent_id == result.rows[1].id
    assert call.depth == 1


def test_orphan_tool_result_anchors_on_current_message(factory: EventFactory) -> None:
    result = _rows(
        [
            factory.message("working", at=1000),
            factory.tool_end("ghost", "read", "data", at=1100),
        ]
    )

    orphan = result.rows[1]
    assert orphan.type == "tool_result"
    assert orphan.parent_id == result.rows[0].id
    assert orphan.depth == 1
    assert orphan.tool_name == "read"


def test_unanchored_rows_fall_back_to_depth_one(factory: EventFactory) -> None:
    result = _rows(
        [
            factory.tool_start("t1", "read", {"path": "a"}),
            factory.tool_end("ghost", ""),
        ]
    )

    assert [(row.depth, row.parent_id) for row in result.rows] == [
        (1, None),
        (1, None),
    ]


def test_tool_name_inferred_from_tool_call_id(factory: EventFactory) -> None:
    result = _rows([factory.tool_start("grep:42", "", {"pattern": "TODO"})])

    assert result.rows[0].tool_name == "grep"
    assert result.rows[0].title == "grep: TODO"


def test_single_delegation_nests_target_rows() -> None:
    result = _rows(single_delegation())
    rows = result.rows

    assert len(rows) == 10
    delegate = next(row for row in rows if row.is_delegate_call)
    assert delegate.tool_call_id == "call-1"
    assert delegate.depth == 1
    assert delegate.nested_in is None
    assert delegate.delegation_group_id == "call-1"
    assert delegate.title == "find docs"

    group = result.delegation_groups["call-1"]
    assert group.delegation_id == "d1"
    assert group.target_agent_id == "researcher"
    assert group.objective == "find docs"
    assert group.status == "completed"
    assert group.end_time == 3000
    assert group.agent_id == "researcher"
    assert [row.content for row in group.child_rows] == ["researching", "read"]

    for child in group.child_rows:
        assert child.nested_in == "call-1"
        assert child.parent_id == delegate.id
        assert child.depth == delegate.depth + 1

    done = _by_content(rows, "done")
    assert done.nested_in is None
    assert done.depth == 0


def test_rows_after_completion_stop_nesting() -> None:
    f = EventFactory("s1")
    events = single_delegation() + [
        f.message("late reply", agent="researcher", at=5000, seq=100)
    ]

    result = _rows(events)
    late = _by_content(result.rows, "late reply")

    assert late.nested_in is None
    assert late.depth == 0


def test_request_before_tool_call_still_correlates(factory: EventFactory) -> None:
    result = _rows(
        [
            factory.prompt("go", at=1000),
            factory.delegation_requested("d1", "researcher", "look", at=1100),
            factory.tool_start(
                "call-1", "delegate", delegate_args("researcher"), at=1200
            ),
            factory.message("on it", agent="researcher", at=1500),
        ]
    )

    assert list(result.delegation_groups) == ["d1"]
    group = result.delegation_groups["d1"]
    assert group.delegating_tool_call_id == "call-1"
    delegate = next(row for row in result.rows if row.is_delegate_call)
    assert delegate.delegation_group_id == "d1"
    child = _by_content(result.rows, "on it")
    assert child.nested_in == "d1"
    assert child.parent_id == delegate.id
    assert child.depth == delegate.depth + 1


def test_nested_delegations_form_a_stack() -> None:
    result = _rows(nested_delegations())
    groups = result.delegation_groups
    call_a = groups["call-a"].delegate_row
    call_b = groups["call-b"].delegate_row

    assert call_a.depth == 1
    assert call_b.parent_id == call_a.id
    assert call_b.depth == call_a.depth + 1

    beta = _by_content(result.rows, "beta working")
    assert beta.nested_in == "call-b"
    assert beta.depth == call_b.depth + 1
    assert beta.depth == call_a.depth + 2

    alpha = _by_content(result.rows, "alpha working")
    assert alpha.nested_in == "call-a"
    assert alpha.depth == call_a.depth + 1

    assert groups["call-b"].end_time == 8000
    assert groups["call-a"].end_time == 10000
    assert groups["call-b"].end_time < groups["call-a"].end_time


def test_inner_completion_does_not_complete_outer() -> None:
    events = nested_delegations()
    cut = next(
        index
        for index, event in enumerate(events)
        if event.kind_name == "delegation_completed"
    )
    result = _rows(events[: cut + 1])

    assert result.delegation_groups["call-b"].status == "completed"
    assert result.delegation_groups["call-a"].status == "in_progress"


def test_depth_matches_parent_depth_plus_one() -> None:
    result = _rows(nested_delegations())
    by_id = {row.id: row for row in result.rows}

    for row in result.rows:
        if row.parent_id is not None:
            assert row.depth == by_id[row.parent_id].depth + 1


def test_missing_agent_and_timestamp_use_fallbacks(factory: EventFactory) -> None:
    first = factory.prompt("hi", at=1000)
    broken = replace(factory.message("ok"), agent_id=None, timestamp_ms=None)

    result = _rows([first, broken], sentinel_agent_id="nobody")

    assert result.rows[1].agent_id == "nobody"
    assert result.rows[1].timestamp_ms == 1000


def test_unnumbered_rows_get_positional_ids(factory: EventFactory) -> None:
    entry = LogEntry.from_event(replace(factory.prompt("hi"), seq=None))

    result = build_rows([entry])

    assert result.rows[0].id == "s1:#0"


def test_failed_delegate_tool_marks_group_failed(factory: EventFactory) -> None:
    result = _rows(
        [
            factory.message("try", at=1000),
            factory.tool_start("call-1", "delegate", delegate_args("alpha"), at=1100),
            factory.tool_end(
                "call-1", "delegate", "no such agent", is_error=True, at=1200
            ),
        ]
    )

    group = result.delegation_groups["call-1"]
    assert group.status == "failed"
    assert group.end_time == 1200
    assert result.rows[1].status == "failed"


def test_custom_delegate_tool_names(factory: EventFactory) -> None:
    result = _rows(
        [factory.tool_start("c1", "Task", {"targetAgentId": "helper"})],
        delegate_tools=frozenset({"task"}),
    )

    row = result.rows[0]
    assert row.is_delegate_call
    assert result.delegation_groups["c1"].target_agent_id == "helper"


def test_delegate_call_inside_a_delegation_stays_top_level(
    factory: EventFactory,
) -> None:
    result = _rows(
        [
            factory.prompt("go", at=1000),
            factory.tool_start("call-a", "delegate", delegate_args("alpha"), at=1100),
            factory.delegation_requested("da", "alpha", at=1200),
            factory.tool_start(
                "call-b", "delegate", delegate_args("beta"), agent="alpha", at=1300
            ),
            factory.delegation_requested("db", "beta", agent="alpha", at=1400),
            factory.message("deep", agent="beta", at=1500),
        ]
    )
    groups = result.delegation_groups
    call_a = groups["call-a"].delegate_row
    call_b = groups["call-b"].delegate_row

    assert call_b.nested_in is None
    assert call_b.delegation_group_id == "call-b"
    assert call_b.parent_id == call_a.id
    assert call_b.depth == call_a.depth + 1
    assert call_b not in groups["call-a"].child_rows

    deep = _by_content(result.rows, "deep")
    assert deep.nested_in == "call-b"
    assert deep.depth == call_b.depth + 1


def test_outer_delegation_to_same_agent_keeps_routing(
    factory: EventFactory,
) -> None:
    result = _rows(
        [
            factory.prompt("go", at=1000),
            factory.tool_start("call-a", "delegate", delegate_args("alpha"), at=1100),
            factory.delegation_requested("da", "alpha", at=1200),
            factory.tool_start("call-b", "delegate", delegate_args("alpha"), at=1300),
            factory.delegation_requested("db", "alpha", at=1400),
            factory.message("inner", agent="alpha", at=1500),
            factory.delegation_completed("db", at=1600),
            factory.message("outer work", agent="alpha", at=1700),
        ]
    )
    groups = result.delegation_groups

    assert _by_content(result.rows, "inner").nested_in == "call-b"
    outer = _by_content(result.rows, "outer work")
    assert outer.nested_in == "call-a"
    assert outer.parent_id == groups["call-a"].delegate_row.id
    assert outer.depth == groups["call-a"].delegate_row.depth + 1
    assert groups["call-a"].status == "in_progress"
    assert groups["call-b"].status == "completed"


def test_request_without_tool_call_nests_one_level(factory: EventFactory) -> None:
    result = _rows(
        [
            factory.prompt("go", at=1000),
            factory.delegation_requested("d1", "helper", at=1100),
            factory.message("helping", agent="helper", at=1200),
        ]
    )

    helping = _by_content(result.rows, "helping")
    assert helping.nested_in == "d1"
    assert helping.parent_id is None
    assert helping.depth == 1
