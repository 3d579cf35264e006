from __future__ import annotations

import re
from collections.abc import Collection, Mapping, Sequence
from typing import Any

from .model import ToolKind

DEFAULT_DELEGATE_TOOLS: frozenset[str] = frozenset({"delegate"})
DEFAULT_TARGET_KEYS: tuple[str, ...] = ("target_agent_id", "targetAgentId")
PATH_KEYS: tuple[str, ...] = ("file_path", "path", "file")

_RUN_RE = re.compile(r"run\s+([a-z0-9_.:-]+)", re.IGNORECASE)


def infer_tool_name(
    tool_name: str | None,
    tool_call_id: str | None = None,
    description: str | None = None,
) -> str | None:
    if tool_name:
        return tool_name
    if isinstance(tool_call_id, str) and ":" in tool_call_id:
        name = tool_call_id.split(":", 1)[0]
        if name:
            return name
    if isinstance(description, str):
        match = _RUN_RE.search(description)
        if match:
            return match.group(1)
    return None


def is_delegate_tool(
    tool_name: str | None, delegate_tools: Collection[str] = DEFAULT_DELEGATE_TOOLS
) -> bool:
    return bool(tool_name) and tool_name.lower() in delegate_tools


def delegate_target(
    arguments: Any, keys: Sequence[str] = DEFAULT_TARGET_KEYS
) -> str | None:
    if not isinstance(arguments, Mapping):
        return None
    for key in keys:
        value = arguments.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def tool_input_path(
    tool_input: Mapping[str, Any],
    *,
    path_keys: Sequence[str] = PATH_KEYS,
) -> str | None:
    for key in path_keys:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def tool_kind_and_title(
    tool_name: str,
    arguments: Any,
    *,
    delegate_tools: Collection[str] = DEFAULT_DELEGATE_TOOLS,
) -> tuple[ToolKind, str]:
    tool_input: Mapping[str, Any] = arguments if isinstance(arguments, Mapping) else {}
    name_lower = tool_name.lower()

    if is_delegate_tool(tool_name, delegate_tools):
        objective = tool_input.get("objective") or tool_input.get("description")
        return "delegate", str(objective or tool_name)

    if name_lower in {"bash", "shell", "shell_exec"}:
        command = tool_input.get("command")
        return "command", str(command or tool_name)

    if name_lower in {"edit", "write", "write_file", "apply_patch", "multiedit"}:
        path = tool_input_path(tool_input)
        return "file_change", path or tool_name

    if name_lower in {"read", "read_file", "read_tool"}:
        path = tool_input_path(tool_input)
        return "tool", f"read: `{path}`" if path else "read"

    if name_lower in {"glob", "ls"}:
        target = tool_input.get("pattern") or tool_input_path(tool_input)
        return "tool", f"{name_lower}: `{target}`" if target else name_lower

    if name_lower in {"grep", "find"}:
        pattern = tool_input.get("pattern")
        return "tool", f"{name_lower}: {pattern}" if pattern else name_lower

    if name_lower in {"websearch", "web_search"}:
        return "web_search", str(tool_input.get("query") or "search")

    if name_lower in {"webfetch", "web_fetch"}:
        return "web_search", str(tool_input.get("url") or "fetch")

    if name_lower in {"todowrite", "todoread"}:
        return "note", "update todos" if "write" in name_lower else "read todos"

    if name_lower in {"question", "askuserquestion"}:
        return "note", "ask user"

    return "tool", tool_name
