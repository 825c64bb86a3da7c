"""Tool interface, tool context with working memory, and the tool registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gars.protocol import ToolSpec

__all__ = [
    "WorkingMemory",
    "ToolContext",
    "StepOutcome",
    "Tool",
    "ToolRegistry",
]

_HISTORY_WINDOW = 30
_FOLD_LIMIT = 100


@dataclass
class WorkingMemory:
    key_info: str | None = None
    related_sop: str | None = None
    passed_sessions: int = 0


@dataclass
class ToolContext:
    gars_home: Path
    cwd: Path
    current_turn: int = 0
    tool_index: int = 0
    tool_count: int = 0
    working: WorkingMemory = field(default_factory=WorkingMemory)
    history_info: list[str] = field(default_factory=list)

    def anchor_prompt(self) -> str:
        """Build the working-memory block appended after tool results."""
        history = self.history_info
        parts = ["\n### [WORKING MEMORY]\n"]
        if len(history) > _HISTORY_WINDOW:
            parts.append("<earlier_context>\n")
            parts.append(_fold_earlier(history[: len(history) - _HISTORY_WINDOW]))
            parts.append("\n</earlier_context>\n")
        parts.append("<history>\n")
        parts.append("\n".join(history[max(len(history) - _HISTORY_WINDOW, 0) :]))
        parts.append("\n</history>\n")
        parts.append(f"Current turn: {self.current_turn}\n")
        if self.working.key_info is not None:
            parts.append(f"\n<key_info>{self.working.key_info}</key_info>\n")
        if self.working.related_sop is not None:
            parts.append(f"\n有不清晰的地方请再次读取{self.working.related_sop}\n")
        return "".join(parts)

    def resolve_path(self, path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else Path(self.cwd) / p


def _fold_earlier(lines: list[str]) -> str:
    parts: list[str] = []
    count = 0
    last = ""
    for line in lines:
        if line.startswith("[USER]"):
            if count:
                parts.append(f"{last}（{count} turns）")
            parts.append(line)
            count = 0
            last = ""
        else:
            count += 1
            last = "[Agent]" if "直接回答" in line else line
    if count:
        parts.append(f"{last}（{count} turns）")
    return "\n".join(parts[-_FOLD_LIMIT:])


@dataclass
class StepOutcome:
    data: Any = None
    next_prompt: str | None = None
    should_exit: bool = False

    @classmethod
    def done(cls, data: Any) -> StepOutcome:
        return cls(data=data)

    @classmethod
    def next(cls, data: Any, next_prompt: str) -> StepOutcome:
        return cls(data=data, next_prompt=next_prompt)

    @classmethod
    def exit(cls, data: Any) -> StepOutcome:
        return cls(data=data, should_exit=True)


class Tool(ABC):
    """A named action the agent can invoke."""

    @abstractmethod
    def name(self) -> str:
        """Registry name of the tool."""

    @abstractmethod
    def spec(self) -> ToolSpec:
        """Function specification shown to the model."""

    @abstractmethod
    async def execute(self, args: Any, ctx: ToolContext) -> StepOutcome:
        """Run the tool with ``args``; may update ``ctx``."""


class ToolRegistry:
    """Tools keyed by name, iterated in name order."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name()] = tool

    def specs(self) -> list[ToolSpec]:
        return [self._tools[name].spec() for name in self.names()]

    def names(self) -> list[str]:
        return sorted(self._tools)

    async def execute(self, name: str, args: Any, ctx: ToolContext) -> StepOutcome:
        tool = self._tools.get(name)
        if tool is None:
            raise LookupError(f"Unknown tool: {name}")
        return await tool.execute(args, ctx)