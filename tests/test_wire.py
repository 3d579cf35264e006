import json

import pytest

from tracefold.schemas.events import (
    AssistantMessage,
    DelegationRequested,
    LlmRequestEnd,
    SystemErrorEvent,
    ToolCallStart,
    UserPrompt,
)
from tracefold.wire import (
    coerce_seq,
    coerce_timestamp_ms,
    decode_event,
    decode_event_line,
    iter_jsonl_events,
    parse_json_maybe,
)


def test_decode_event_with_aliases_and_seconds() -> None:
    event = decode_event(
        {
            "seq": 3,
            "session_id": "s1",
            "agent_id": "primary",
            "timestamp": 1.5,
            "kind": {"type": "prompt_received", "content": "hi"},
        }
    )

    assert event is not None
    assert event.seq == 3
    assert event.timestamp_ms == 1500
    assert event.kind == UserPrompt(content="hi")
    assert event.kind_name == "user_prompt"


def test_decode_flattens_nested_delegation() -> None:
    event = decode_event(
        {
            "seq": 1,
            "session_id": "s1",
            "agent_id": "primary",
            "timestamp_ms": 2000,
            "kind": {
                "type": "delegation_requested",
                "delegation": {
                    "public_id": "d1",
                    "target_agent_id": "helper",
                    "objective": "look",
                },
            },
        }
    )

    assert event is not None
    assert event.kind == DelegationRequested(
        delegation_id="d1", target_agent_id="helper", objective="look"
    )


def test_decode_accepts_type_name_and_extra_fields() -> None:
    event = decode_event(
        {
            "seq": "7",
            "session_id": "s1",
            "kind": {
                "type_name": "assistant_message_stored",
                "content": "ok",
                "unknown_field": 1,
            },
        }
    )

    assert event is not None
    assert event.seq == 7
    assert event.agent_id is None
    assert event.timestamp_ms is None
    assert event.kind == AssistantMessage(content="ok")


def test_decode_defaults_missing_session() -> None:
    event = decode_event({"kind": {"type": "error", "message": "boom"}})

    assert event is not None
    assert event.session_id == "default"
    assert event.kind == SystemErrorEvent(message="boom")


@pytest.mark.parametrize(
    "payload",
    [
        {"kind": {"type": "not_a_kind"}},
        {"kind": {"content": "no type"}},
        {"kind": {"type": "tool_call_start"}},
        {"seq": 1},
        {"kind": "not an object"},
    ],
)
def test_decode_malformed_returns_none(payload: dict) -> None:
    assert decode_event(payload) is None


def test_decode_event_line_parses_nested_structures() -> None:
    line = json.dumps(
        {
            "seq": 2,
            "session_id": "s1",
            "agent_id": "primary",
            "timestamp_ms": 10,
            "kind": {
                "type": "llm_request_end",
                "finish_reason": "stop",
                "usage": {"input_tokens": 5, "output_tokens": 7},
                "metrics": {"steps": 2, "turns": 1},
                "cumulative_cost_usd": 0.5,
            },
        }
    )

    event = decode_event_line(line)

    assert event is not None
    assert isinstance(event.kind, LlmRequestEnd)
    assert event.kind.usage.output_tokens == 7
    assert event.kind.metrics.steps == 2
    assert event.kind.cumulative_cost_usd == 0.5


def test_decode_event_line_rejects_bad_json() -> None:
    assert decode_event_line("{not json") is None
    assert decode_event_line(b"[1, 2]") is None


def test_iter_jsonl_events_skips_blank_and_bad_lines() -> None:
    good = json.dumps(
        {
            "seq": 1,
            "session_id": "s1",
            "kind": {
                "type": "tool_call_start",
                "tool_call_id": "t1",
                "tool_name": "bash",
                "arguments": '{"command": "ls"}',
            },
        }
    )

    events = list(iter_jsonl_events(["", "   ", "{bad", good + "\n"]))

    assert len(events) == 1
    assert isinstance(events[0].kind, ToolCallStart)
    assert parse_json_maybe(events[0].kind.arguments) == {"command": "ls"}


def test_parse_json_maybe_keeps_plain_values() -> None:
    assert parse_json_maybe("plain text") == "plain text"
    assert parse_json_maybe({"a": 1}) == {"a": 1}
    assert parse_json_maybe("[1, 2]") == [1, 2]


def test_coerce_seq() -> None:
    assert coerce_seq(4) == 4
    assert coerce_seq(" 12 ") == 12
    assert coerce_seq(True) is None
    assert coerce_seq("x") is None
    assert coerce_seq(None) is None


def test_coerce_timestamp_ms() -> None:
    assert coerce_timestamp_ms(millis=1234) == 1234
    assert coerce_timestamp_ms(millis="1234") == 1234
    assert coerce_timestamp_ms(seconds=2) == 2000
    assert coerce_timestamp_ms(seconds=1.0, millis=5) == 5
    assert coerce_timestamp_ms(seconds="2024-01-01T00:00:00Z") == 1704067200000
    assert coerce_timestamp_ms(seconds="yesterday") is None
    assert coerce_timestamp_ms(seconds=True) is None
    assert coerce_timestamp_ms() is None
