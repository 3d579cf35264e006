from __future__ import annotations

from pathlib import Path
from typing import Any

import msgspec
import typer
from rich import box
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigError
from .logging import bind_session_context, clear_context, get_logger, setup_logging
from .model import DelegationGroup, Turn
from .settings import TracefoldSettings, load_settings, load_settings_if_exists
from .stats import calculate_stats
from .store import SessionStore
from .timer import TimerReading
from .view import SessionView
from .wire import iter_jsonl_events

logger = get_logger(__name__)


def _print_version_and_exit() -> None:
    typer.echo(__version__)
    raise typer.Exit()


def _version_callback(value: bool) -> None:
    if value:
        _print_version_and_exit()


def _resolve_settings(config: Path | None) -> TracefoldSettings:
    if config is not None:
        settings, _ = load_settings(config)
        return settings
    loaded = load_settings_if_exists()
    if loaded is None:
        return TracefoldSettings()
    return loaded[0]


def _format_ms(value: int | None) -> str:
    if value is None:
        return "-"
    seconds, millis = divmod(value, 1000)
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}:{seconds:02d}.{millis:03d}"


def _turn_payload(turn: Turn) -> dict[str, Any]:
    return {
        "id": turn.id,
        "agent_id": turn.agent_id,
        "start_time": turn.start_time,
        "end_time": turn.end_time,
        "is_active": turn.is_active,
        "model_label": turn.model_label,
        "user_message": turn.user_message.content if turn.user_message else None,
        "agent_messages": [row.content for row in turn.agent_messages],
        "tool_calls": [
            {"id": row.tool_call_id, "tool": row.tool_name, "status": row.status}
            for row in turn.tool_calls
        ],
        "delegations": [group.id for group in turn.delegations],
        "error": turn.error,
    }


def _group_payload(group: DelegationGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "delegation_id": group.delegation_id,
        "delegating_tool_call_id": group.delegating_tool_call_id,
        "target_agent_id": group.target_agent_id,
        "objective": group.objective,
        "child_session_id": group.child_session_id,
        "status": group.status,
        "start_time": group.start_time,
        "end_time": group.end_time,
        "child_rows": len(group.child_rows),
    }


def _replay_payload(view: SessionView, reading: TimerReading) -> dict[str, Any]:
    stats = calculate_stats(view.rows)
    return {
        "session_id": view.session_id,
        "rows": len(view.rows),
        "turns": [_turn_payload(turn) for turn in view.turns],
        "delegations": [_group_payload(group) for group in view.delegations],
        "timers": {
            "global_elapsed_ms": reading.global_elapsed_ms,
            "agent_elapsed_ms": reading.agent_elapsed_ms,
            "is_session_active": reading.is_session_active,
        },
        "stats": {
            "total_cost_usd": stats.session.total_cost_usd,
            "total_messages": stats.session.total_messages,
            "total_tool_calls": stats.session.total_tool_calls,
        },
    }


def _render(console: Console, view: SessionView, reading: TimerReading) -> None:
    console.print(f"[bold]session[/] {view.session_id}  rows: {len(view.rows)}")

    turns = Table(show_header=True, header_style="bold", box=box.SIMPLE)
    for column in ("turn", "agent", "model", "messages", "tools", "delegations"):
        turns.add_column(column)
    turns.add_column("active")
    for turn in view.turns:
        turns.add_row(
            turn.id,
            turn.agent_id or "-",
            turn.model_label or "-",
            str(len(turn.agent_messages)),
            str(len(turn.tool_calls)),
            str(len(turn.delegations)),
            "[green]yes[/]" if turn.is_active else "[dim]no[/]",
        )
    console.print(turns)

    if view.delegations:
        groups = Table(show_header=True, header_style="bold", box=box.SIMPLE)
        for column in ("delegation", "target", "status", "rows", "objective"):
            groups.add_column(column)
        for group in view.delegations:
            groups.add_row(
                group.delegation_id or group.id,
                group.target_agent_id or "-",
                group.status,
                str(len(group.child_rows)),
                group.objective or "",
            )
        console.print(groups)

    console.print(f"[bold]global[/] {_format_ms(reading.global_elapsed_ms)}")
    for agent_id, elapsed in sorted(reading.agent_elapsed_ms.items()):
        console.print(f"  {agent_id}: {_format_ms(elapsed)}")


app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Reconstruct turns, delegations and timers from agent event streams.",
)


@app.callback()
def app_main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Tracefold CLI."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=1)


@app.command()
def replay(
    path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="JSONL event dump."
    ),
    session: str | None = typer.Option(
        None, "--session", help="Session to reconstruct (default: main session)."
    ),
    now_ms: int | None = typer.Option(
        None, "--now-ms", help="Wall clock for live timers (default: last event)."
    ),
    json_output: bool = typer.Option(False, "--json", help="Print JSON output."),
    debug: bool = typer.Option(
        False, "--debug/--no-debug", help="Log every fold step to stderr."
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to tracefold.toml."
    ),
) -> None:
    """Replay a JSONL event dump and print the reconstructed session."""
    setup_logging(debug=debug)
    try:
        settings = _resolve_settings(config)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)

    store = SessionStore(settings)
    with path.open("r", encoding="utf-8") as handle:
        applied = store.ingest_many(iter_jsonl_events(handle))
    session_id = session or store.main_session_id
    if session_id is None or session_id not in store.session_ids:
        typer.echo(f"No events for session {session_id!r} in {path}.", err=True)
        raise typer.Exit(code=1)

    clear_context()
    bind_session_context(session_id=session_id)
    logger.debug("replay.loaded", path=str(path), applied=applied)
    view = store.snapshot(session_id)
    now = now_ms if now_ms is not None else view.timers.last_event_ms
    reading = view.timer_reading(
        now,
        store.thinking.agents,
        store.thinking.conversation_complete,
    )

    if json_output:
        payload = msgspec.json.encode(_replay_payload(view, reading))
        typer.echo(msgspec.json.format(payload, indent=2).decode())
        return
    _render(Console(), view, reading)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
