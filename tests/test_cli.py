import json
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner

from tracefold import __version__, cli

STREAM = [
    {"kind": {"type": "user_prompt", "content": "dig into it"}, "timestamp_ms": 1000},
    {"kind": {"type": "llm_request_start"}, "timestamp_ms": 1000},
    {"kind": {"type": "assistant_message", "content": "delegating"}, "timestamp_ms": 1100},
    {
        "kind": {
            "type": "tool_call_start",
            "tool_call_id": "call-1",
            "tool_name": "delegate",
            "arguments": '{"target_agent_id": "helper", "objective": "dig"}',
        },
        "timestamp_ms": 1200,
    },
    {
        "kind": {
            "type": "delegation_requested",
            "delegation_id": "d1",
            "target_agent_id": "helper",
        },
        "timestamp_ms": 1300,
    },
    {
        "kind": {"type": "assistant_message", "content": "digging"},
        "agent_id": "helper",
        "timestamp_ms": 1500,
    },
    {"kind": {"type": "delegation_completed", "delegation_id": "d1"}, "timestamp_ms": 2000},
    {
        "kind": {
            "type": "llm_request_end",
            "finish_reason": "stop",
            "cumulative_cost_usd": 0.5,
        },
        "timestamp_ms": 4000,
    },
]


@pytest.fixture(autouse=True)
def _isolated_cli(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(cli, "load_settings_if_exists", lambda: None)
    yield
    structlog.reset_defaults()


def _write_stream(path: Path, *, garbage: bool = False) -> Path:
    lines = []
    for seq, raw in enumerate(STREAM, start=1):
        event = {"seq": seq, "session_id": "s1", "agent_id": "primary", **raw}
        lines.append(json.dumps(event))
    if garbage:
        lines.insert(3, "{not json")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_version_flag() -> None:
    result = CliRunner().invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == __version__


def test_no_command_prints_help() -> None:
    result = CliRunner().invoke(cli.app, [])

    assert result.exit_code == 1
    assert "replay" in result.stdout


def test_replay_json(tmp_path: Path) -> None:
    dump = _write_stream(tmp_path / "events.jsonl")

    result = CliRunner().invoke(cli.app, ["replay", str(dump), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["session_id"] == "s1"
    (turn,) = payload["turns"]
    assert turn["user_message"] == "dig into it"
    assert turn["agent_messages"] == ["delegating"]
    assert turn["tool_calls"] == [
        {"id": "call-1", "tool": "delegate", "status": "in_progress"}
    ]
    assert turn["delegations"] == ["call-1"]
    assert turn["is_active"] is False
    (group,) = payload["delegations"]
    assert group["delegation_id"] == "d1"
    assert group["status"] == "completed"
    assert group["objective"] == "dig"
    assert group["child_rows"] == 1
    assert payload["timers"]["global_elapsed_ms"] == 3000
    assert payload["timers"]["agent_elapsed_ms"]["primary"] == 300 + 2000
    assert payload["timers"]["is_session_active"] is False
    assert payload["stats"]["total_cost_usd"] == 0.5
    assert payload["stats"]["total_messages"] == 3
    assert payload["stats"]["total_tool_calls"] == 1


def test_replay_now_ms_has_no_effect_once_paused(tmp_path: Path) -> None:
    dump = _write_stream(tmp_path / "events.jsonl")

    result = CliRunner().invoke(
        cli.app, ["replay", str(dump), "--json", "--now-ms", "99000"]
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["timers"]["global_elapsed_ms"] == 3000


def test_replay_table_output(tmp_path: Path) -> None:
    dump = _write_stream(tmp_path / "events.jsonl", garbage=True)

    result = CliRunner().invoke(cli.app, ["replay", str(dump)])

    assert result.exit_code == 0, result.output
    assert "turn-1" in result.stdout
    assert "helper" in result.stdout
    assert "0:03.000" in result.stdout


def test_replay_unknown_session(tmp_path: Path) -> None:
    dump = _write_stream(tmp_path / "events.jsonl")

    result = CliRunner().invoke(cli.app, ["replay", str(dump), "--session", "nope"])

    assert result.exit_code == 1
    assert "No events for session 'nope'" in result.output


def test_replay_bad_config(tmp_path: Path) -> None:
    dump = _write_stream(tmp_path / "events.jsonl")
    config = tmp_path / "tracefold.toml"
    config.write_text("tick_interval_s = [", encoding="utf-8")

    result = CliRunner().invoke(
        cli.app, ["replay", str(dump), "--config", str(config)]
    )

    assert result.exit_code == 1
    assert "Malformed TOML" in result.output


def test_format_ms() -> None:
    assert cli._format_ms(None) == "-"
    assert cli._format_ms(61_005) == "1:01.005"
