"""Chat protocol types, the LLM client interface and text helpers for tool calls."""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

__all__ = [
    "Role",
    "ChatMessage",
    "ToolCall",
    "ToolFunction",
    "ToolSpec",
    "ChatRequest",
    "ChatResponse",
    "LlmClient",
    "DeltaSink",
    "expand_file_refs",
    "smart_truncate",
    "trim_history_tags",
    "parse_text_tool_calls",
]

DeltaSink = Callable[[str], None]


class Role(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ChatMessage:
    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(Role.USER, str(content))

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(Role.ASSISTANT, str(content))

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Any

    @classmethod
    def new(cls, name: str, arguments: Any) -> ToolCall:
        """Create a call with a fresh ``toolu_`` identifier."""
        return cls(id=f"toolu_{uuid.uuid4().hex}", name=name, arguments=arguments)


@dataclass
class ToolFunction:
    name: str
    description: str
    parameters: Any


@dataclass
class ToolSpec:
    kind: str
    function: ToolFunction

    @classmethod
    def make_function(cls, name: str, description: str, parameters: Any) -> ToolSpec:
        return cls(kind="function", function=ToolFunction(name, description, parameters))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "function": {
                "name": self.function.name,
                "description": self.function.description,
                "parameters": self.function.parameters,
            },
        }


@dataclass
class ChatRequest:
    system: str = ""
    messages: list[ChatMessage] = field(default_factory=list)
    tools: list[ToolSpec] = field(default_factory=list)


@dataclass
class ChatResponse:
    content: str = ""
    thinking: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw: Any = None


class LlmClient(ABC):
    """A chat model backend."""

    @abstractmethod
    def name(self) -> str:
        """Short name of the backend."""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Run one non-streaming completion."""

    async def chat_stream(self, request: ChatRequest, on_delta: DeltaSink) -> ChatResponse:
        """Stream content deltas to ``on_delta``; by default emits the whole reply once."""
        response = await self.chat(request)
        if response.content:
            on_delta(response.content)
        return response


def _lines(text: str) -> list[str]:
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [p[:-1] if p.endswith("\r") else p for p in parts]


def _parse_usize(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"invalid line number: {text!r}")
    return int(text)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise OSError(f"read {path}: {err}") from err


def expand_file_refs(content: str, base: Path | str) -> str:
    """Expand ``{{file:path}}``, ``{{file:path:start:end}}`` and ``{{glob:pattern}}``.

    Relative paths resolve against ``base``. Other ``{{...}}`` blocks are kept.
    """
    base = Path(base)
    out: list[str] = []
    rest = content
    while (start := rest.find("{{")) >= 0:
        out.append(rest[:start])
        after = rest[start + 2 :]
        end = after.find("}}")
        if end < 0:
            out.append("{{")
            rest = after
            continue
        body = after[:end].strip()
        rest = after[end + 2 :]
        if body.startswith("file:"):
            out.append(_expand_file_spec(body[len("file:") :], base))
        elif body.startswith("glob:"):
            out.append(_expand_glob(body[len("glob:") :].strip(), base))
        else:
            out.append("{{" + body + "}}")
    out.append(rest)
    return "".join(out)


def _expand_file_spec(spec: str, base: Path) -> str:
    parts = spec.rsplit(":", 2)
    start_line: int | None = None
    end_line: int | None = None
    if len(parts) == 3:
        path_part, start_text, end_text = parts
        end_line = _parse_usize(end_text)
        start_line = _parse_usize(start_text)
    elif len(parts) == 1:
        path_part = parts[0]
    else:
        raise ValueError("file ref must be {file:path} or {file:path:start:end}")
    path = Path(path_part)
    if not path.is_absolute():
        path = base / path
    text = _read_text(path)
    if start_line is None or end_line is None:
        return text
    lines = _lines(text)
    if start_line == 0 or end_line < start_line or end_line > len(lines):
        raise ValueError(f"file ref line range out of bounds: {path}")
    return "\n".join(lines[start_line - 1 : end_line])


def _expand_glob(pattern: str, base: Path) -> str:
    abs_pattern = pattern if Path(pattern).is_absolute() else str(base / pattern)
    out: list[str] = []
    for path in _simple_glob(abs_pattern):
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            text = ""
        out.append(f"\n# ===== {path} =====\n{text}")
    return "".join(out)


def _simple_glob(pattern: str) -> list[Path]:
    """Match ``*`` in the last path component only."""
    path = Path(pattern)
    if "*" not in pattern:
        return [path] if path.exists() else []
    parent = path.parent
    file_pattern = path.name
    try:
        entries = sorted(parent.iterdir())
    except OSError:
        return []
    return [p for p in entries if _glob_matches(file_pattern, p.name)]


def _glob_matches(pattern: str, text: str) -> bool:
    parts = pattern.split("*")
    if not text.startswith(parts[0]):
        return False
    cursor = len(parts[0])
    for part in parts[1 : max(len(parts) - 1, 1)]:
        idx = text.find(part, cursor)
        if idx < 0:
            return False
        cursor = idx + len(part)
    return text[cursor:].endswith(parts[-1])


def smart_truncate(data: str, max_len: int) -> str:
    """Shorten ``data`` to about ``max_len`` characters, keeping head and tail."""
    if len(data) <= max_len:
        return data
    if max_len <= 32:
        return data[:max_len]
    half = max(max_len - 28, 0) // 2
    head = data[:half]
    tail = data[-half:] if half else ""
    return f"{head}\n...[truncated]...\n{tail}"


_HISTORY_TAGS = ("thinking", "think", "tool_use", "tool_result", "history", "key_info")


def trim_history_tags(text: str, max_inner: int) -> str:
    """Truncate the inner text of known history tags to ``max_inner`` characters."""
    for tag in _HISTORY_TAGS:
        text = _trim_single_tag(text, tag, max_inner)
    return text


def _trim_single_tag(text: str, tag: str, max_inner: int) -> str:
    open_tag = f"<{tag}>"
    close_tag = f"</{tag}>"
    out: list[str] = []
    rest = text
    while (start := rest.find(open_tag)) >= 0:
        out.append(rest[:start])
        after_prefix = rest[start:]
        end = after_prefix.find(close_tag)
        if end < 0:
            out.append(after_prefix)
            rest = ""
            break
        out.append(open_tag)
        out.append(smart_truncate(after_prefix[len(open_tag) : end], max_inner))
        out.append(close_tag)
        rest = after_prefix[end + len(close_tag) :]
    out.append(rest)
    return "".join(out)


def parse_text_tool_calls(content: str) -> tuple[list[ToolCall], str]:
    """Extract tool calls written inline as text.

    Understands ``<tool_use>``/``<tool_call>`` blocks holding JSON and, failing
    those, a trailing ``[{"type":"tool_use", ...}]`` array. Returns the calls
    and the remaining text, stripped.
    """
    calls: list[ToolCall] = []
    cleaned: list[str] = []
    rest = content

    while (start := _find_tool_open(rest)) is not None:
        cleaned.append(rest[:start])
        after_start = rest[start:]
        gt = after_start.find(">")
        if gt < 0:
            cleaned.append(after_start)
            return calls, "".join(cleaned).strip()
        open_tag = after_start[: gt + 1]
        close_tag = "</tool_call>" if open_tag.startswith("<tool_call") else "</tool_use>"
        body_start = gt + 1
        end = after_start.find(close_tag, body_start)
        if end < 0:
            cleaned.append(after_start)
            return calls, "".join(cleaned).strip()
        body = after_start[body_start:end].strip()
        try:
            calls.append(_parse_tool_json(body))
        except ValueError:
            calls.append(
                ToolCall.new(
                    "bad_json",
                    {"msg": f"Failed to parse tool_use JSON: {smart_truncate(body, 220)}"},
                )
            )
        rest = after_start[end + len(close_tag) :]
    cleaned.append(rest)

    if not calls:
        parsed = _parse_tool_use_array(content)
        if parsed is not None:
            return parsed

    return calls, "".join(cleaned).strip()


def _parse_tool_use_array(content: str) -> tuple[list[ToolCall], str] | None:
    idx = content.find('[{"type":"tool_use"')
    if idx < 0:
        idx = content.find('[{"type": "tool_use"')
    if idx < 0:
        return None
    try:
        items = json.loads(content[idx:])
    except ValueError:
        return None
    if not isinstance(items, list):
        return None
    parsed = []
    for item in items:
        if not isinstance(item, dict) or item.get("type") != "tool_use":
            continue
        name = item.get("name")
        call_id = item.get("id")
        parsed.append(
            ToolCall(
                id=call_id if isinstance(call_id, str) else "",
                name=name if isinstance(name, str) else "bad_json",
                arguments=item.get("input"),
            )
        )
    if not parsed:
        return None
    return parsed, content[:idx].strip()


def _find_tool_open(text: str) -> int | None:
    found = [i for i in (text.find("<tool_use"), text.find("<tool_call")) if i >= 0]
    return min(found) if found else None


def _first_present(value: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in value:
            return value[key]
    return None


def _parse_tool_json(body: str) -> ToolCall:
    text = body.strip().strip("`")
    if text.startswith("json\n"):
        text = text[len("json\n") :]
    value = json.loads(text.strip())
    if not isinstance(value, dict):
        return ToolCall(id="", name="bad_json", arguments=None)
    name = _first_present(value, ("name", "function", "tool"))
    call_id = value.get("id")
    return ToolCall(
        id=call_id if isinstance(call_id, str) else "",
        name=name if isinstance(name, str) else "bad_json",
        arguments=_first_present(value, ("arguments", "args", "params", "parameters")),
    )