"""Decode transport-delivered JSON events into ``Event`` envelopes."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime
from typing import Any

import msgspec

from .logging import get_logger
from .model import Event
from .schemas.events import EventKind, WireEvent

logger = get_logger(__name__)

DEFAULT_SESSION_ID = "default"

KIND_ALIASES: dict[str, str] = {
    "prompt_received": "user_prompt",
    "assistant_message_stored": "assistant_message",
    "error": "system_error",
}

_ENVELOPE_DECODER = msgspec.json.Decoder(WireEvent)


def parse_json_maybe(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return msgspec.json.decode(value)
    except msgspec.DecodeError:
        return value


def coerce_seq(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def coerce_timestamp_ms(seconds: Any = None, millis: Any = None) -> int | None:
    if millis is not None and not isinstance(millis, bool):
        if isinstance(millis, (int, float)):
            return int(millis)
        if isinstance(millis, str):
            try:
                return int(float(millis))
            except ValueError:
                pass
    if seconds is None or isinstance(seconds, bool):
        return None
    if isinstance(seconds, (int, float)):
        return int(round(seconds * 1000))
    if isinstance(seconds, str):
        text = seconds.strip()
        try:
            return int(round(float(text) * 1000))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return int(parsed.timestamp() * 1000)
    return None


def normalize_kind(kind: Mapping[str, Any]) -> dict[str, Any]:
    payload = dict(kind)
    kind_type = payload.get("type") or payload.get("type_name")
    payload.pop("type_name", None)
    if isinstance(kind_type, str):
        payload["type"] = KIND_ALIASES.get(kind_type, kind_type)
    delegation = payload.pop("delegation", None)
    if isinstance(delegation, Mapping):
        payload.setdefault("delegation_id", delegation.get("public_id"))
        payload.setdefault("target_agent_id", delegation.get("target_agent_id"))
        payload.setdefault("objective", delegation.get("objective"))
    return payload


def decode_event(obj: WireEvent | Mapping[str, Any]) -> Event | None:
    try:
        envelope = (
            obj if isinstance(obj, WireEvent) else msgspec.convert(obj, WireEvent)
        )
        kind = msgspec.convert(normalize_kind(envelope.kind), EventKind)
    except msgspec.ValidationError as exc:
        logger.warning("wire.decode.error", error=str(exc))
        return None
    agent_id = envelope.agent_id
    session_id = envelope.session_id
    return Event(
        seq=coerce_seq(envelope.seq),
        session_id=session_id
        if isinstance(session_id, str) and session_id
        else DEFAULT_SESSION_ID,
        agent_id=agent_id if isinstance(agent_id, str) and agent_id else None,
        timestamp_ms=coerce_timestamp_ms(envelope.timestamp, envelope.timestamp_ms),
        kind=kind,
    )


def decode_event_line(line: str | bytes) -> Event | None:
    try:
        envelope = _ENVELOPE_DECODER.decode(line)
    except msgspec.DecodeError as exc:
        logger.warning("wire.decode.error", error=str(exc))
        return None
    return decode_event(envelope)


def iter_jsonl_events(lines: Iterable[str | bytes]) -> Iterator[Event]:
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        event = decode_event_line(line)
        if event is None:
            logger.info("wire.line.skipped", lineno=lineno)
            continue
        yield event
