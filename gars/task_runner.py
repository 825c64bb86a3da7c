"""Run one task through the agent runtime with optional SOPs, tool limits and a deadline."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from gars.protocol import ChatResponse, LlmClient
from gars.runtime import (
    EXITED,
    MAX_TURNS_EXCEEDED,
    AgentRuntime,
    RuntimeEvent,
    RuntimeOptions,
)
from gars.tool import ToolRegistry

__all__ = [
    "OutcomeKind",
    "TaskOutcome",
    "TaskRunOpts",
    "run_task",
    "assemble_system_prompt",
]


class OutcomeKind(str, Enum):
    """How a task run ended."""

    DONE = "done"
    EXITED = "exited"
    MAX_TURNS = "max_turns"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class TaskOutcome:
    """Result of a single :func:`run_task` call."""

    kind: OutcomeKind
    reply: str = ""
    final_response: ChatResponse | None = None
    exit_data: Any = None

    def is_complete(self) -> bool:
        """True when the model stopped on its own or a tool asked to exit."""
        return self.kind in (OutcomeKind.DONE, OutcomeKind.EXITED)


@dataclass
class TaskRunOpts:
    """Inputs to a single task execution.

    ``deadline`` is a :func:`time.monotonic` timestamp; once it passes the run
    stops with :attr:`OutcomeKind.BUDGET_EXHAUSTED`.
    """

    prompt: str
    system_prompt_base: str = ""
    sop_contents: list[str] = field(default_factory=list)
    allowed_tools: frozenset[str] | set[str] | None = None
    max_turns: int = 70
    context_char_budget: int = 180_000
    deadline: float | None = None
    cwd: Path = field(default_factory=Path.cwd)
    gars_home: Path = field(default_factory=lambda: Path(""))
    verbose: bool = True


def assemble_system_prompt(base: str, sops: list[str]) -> str:
    """Append each non-empty SOP, trimmed, to ``base`` separated by blank lines."""
    out = base
    for sop in sops:
        trimmed = sop.strip()
        if not trimmed:
            continue
        if out:
            out += "\n\n"
        out += trimmed
    return out


async def run_task(
    client: LlmClient,
    tool_registry: ToolRegistry,
    opts: TaskRunOpts,
    emit: Callable[[RuntimeEvent], None] | None = None,
) -> TaskOutcome:
    """Drive one task through :class:`AgentRuntime` and classify how it ended."""
    system_prompt = assemble_system_prompt(opts.system_prompt_base, opts.sop_contents)
    runtime_opts = RuntimeOptions(
        max_turns=opts.max_turns,
        context_char_budget=opts.context_char_budget,
        cwd=opts.cwd,
        gars_home=opts.gars_home,
        verbose=opts.verbose,
        allowed_tools=opts.allowed_tools,
    )
    runtime = AgentRuntime(client, tool_registry, system_prompt, runtime_opts)

    if opts.deadline is None:
        raw = await runtime.run_once(opts.prompt, emit)
    else:
        remaining = opts.deadline - time.monotonic()
        if remaining <= 0:
            return TaskOutcome(OutcomeKind.BUDGET_EXHAUSTED)
        try:
            raw = await asyncio.wait_for(runtime.run_once(opts.prompt, emit), remaining)
        except asyncio.TimeoutError:
            return TaskOutcome(OutcomeKind.BUDGET_EXHAUSTED)

    reply = raw.final_response.content if raw.final_response is not None else raw.result
    if raw.result == EXITED:
        return TaskOutcome(OutcomeKind.EXITED, reply, exit_data=raw.exit_data)
    if raw.result == MAX_TURNS_EXCEEDED:
        return TaskOutcome(OutcomeKind.MAX_TURNS, reply)
    return TaskOutcome(OutcomeKind.DONE, reply, raw.final_response, raw.exit_data)