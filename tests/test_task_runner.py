import asyncio
import time
from pathlib import Path

import pytest

from gars.protocol import ChatRequest, ChatResponse, LlmClient, ToolCall, ToolSpec
from gars.runtime import TurnStarted
from gars.task_runner import (
    OutcomeKind,
    TaskOutcome,
    TaskRunOpts,
    assemble_system_prompt,
    run_task,
)
from gars.tool import StepOutcome, Tool, ToolRegistry


class ScriptedClient(LlmClient):
    def __init__(self, replies, delay=0.0):
        self.replies = list(replies)
        self.seen_system = None
        self.delay = delay

    def name(self):
        return "scripted"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.seen_system = request.system
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.replies:
            return ChatResponse(content="done")
        return self.replies.pop(0)


class ExitTool(Tool):
    def name(self):
        return "finish"

    def spec(self):
        return ToolSpec.make_function("finish", "stop", {})

    async def execute(self, args, ctx):
        return StepOutcome.exit({"bye": True})


def make_opts(**kw):
    base = dict(
        prompt="hi",
        max_turns=5,
        context_char_budget=50_000,
        cwd=Path("."),
        gars_home=Path("."),
        verbose=False,
    )
    base.update(kw)
    return TaskRunOpts(**base)


@pytest.mark.asyncio
async def test_concatenates_sops_into_system_prompt():
    client = ScriptedClient([ChatResponse(content="ok")])
    opts = make_opts(system_prompt_base="BASE", sop_contents=["SOP-A", "SOP-B"])
    outcome = await run_task(client, ToolRegistry(), opts, lambda _e: None)
    assert outcome.kind is OutcomeKind.DONE
    assert outcome.reply == "ok"
    assert client.seen_system == "BASE\n\nSOP-A\n\nSOP-B"


@pytest.mark.asyncio
async def test_deadline_in_the_past_short_circuits():
    client = ScriptedClient([])
    opts = make_opts(deadline=time.monotonic() - 1)
    outcome = await run_task(client, ToolRegistry(), opts, lambda _e: None)
    assert outcome.kind is OutcomeKind.BUDGET_EXHAUSTED
    assert outcome.reply == ""
    assert client.seen_system is None


@pytest.mark.asyncio
async def test_deadline_elapses_during_run():
    client = ScriptedClient([], delay=2.0)
    opts = make_opts(deadline=time.monotonic() + 0.05)
    outcome = await run_task(client, ToolRegistry(), opts)
    assert outcome.kind is OutcomeKind.BUDGET_EXHAUSTED
    assert not outcome.is_complete()


@pytest.mark.asyncio
async def test_tool_call_then_done_completes():
    client = ScriptedClient(
        [
            ChatResponse(
                content="calling tool",
                tool_calls=[ToolCall.new("bad_json", {"a": 1})],
            ),
            ChatResponse(content="final answer"),
        ]
    )
    events = []
    outcome = await run_task(client, ToolRegistry(), make_opts(), events.append)
    assert outcome.kind is OutcomeKind.DONE
    assert outcome.reply == "final answer"
    assert outcome.is_complete()
    assert [e.turn for e in events if isinstance(e, TurnStarted)] == [1, 2]


@pytest.mark.asyncio
async def test_max_turns_reported():
    replies = [
        ChatResponse(content="again", tool_calls=[ToolCall.new("bad_json", {})])
        for _ in range(3)
    ]
    client = ScriptedClient(replies)
    outcome = await run_task(client, ToolRegistry(), make_opts(max_turns=2))
    assert outcome.kind is OutcomeKind.MAX_TURNS
    assert outcome.reply == "again"
    assert not outcome.is_complete()


@pytest.mark.asyncio
async def test_exit_tool_gives_exited_outcome():
    registry = ToolRegistry()
    registry.register(ExitTool())
    client = ScriptedClient(
        [ChatResponse(content="bye", tool_calls=[ToolCall.new("finish", {})])]
    )
    outcome = await run_task(client, registry, make_opts())
    assert outcome.kind is OutcomeKind.EXITED
    assert outcome.exit_data == {"bye": True}
    assert outcome.reply == "bye"
    assert outcome.is_complete()


def test_assemble_system_prompt_skips_blank_sops():
    assert assemble_system_prompt("", ["  ", " SOP-A \n"]) == "SOP-A"
    assert assemble_system_prompt("BASE", []) == "BASE"


def test_is_complete_by_kind():
    assert TaskOutcome(OutcomeKind.DONE).is_complete()
    assert TaskOutcome(OutcomeKind.EXITED).is_complete()
    assert not TaskOutcome(OutcomeKind.MAX_TURNS).is_complete()
    assert not TaskOutcome(OutcomeKind.BUDGET_EXHAUSTED).is_complete()