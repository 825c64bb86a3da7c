from typing import Any

import pytest

from gars.protocol import ChatMessage, ChatRequest, ChatResponse, LlmClient, Role, ToolCall, ToolSpec
from gars.runtime import (
    AgentRuntime,
    AssistantText,
    RuntimeOptions,
    ToolFinished,
    ToolStarted,
    TurnStarted,
    WarningRaised,
)
from gars.tool import StepOutcome, Tool, ToolContext, ToolRegistry


class MockClient(LlmClient):
    def __init__(self) -> None:
        self.calls = 0

    def name(self) -> str:
        return "mock"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.calls += 1
        if self.calls == 1:
            return ChatResponse(
                content="<summary>read file</summary>",
                tool_calls=[ToolCall.new("bad_json", {"oops": True})],
            )
        return ChatResponse(content="done")


class ScriptedClient(LlmClient):
    def __init__(self, replies: list[ChatResponse]) -> None:
        self.replies = list(replies)
        self.requests: list[ChatRequest] = []

    def name(self) -> str:
        return "scripted"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.replies:
            return self.replies.pop(0)
        return ChatResponse(content="done")


class LoopingClient(LlmClient):
    def name(self) -> str:
        return "loop"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return ChatResponse(content="again", tool_calls=[ToolCall.new("echo", {"x": 1})])


class EchoTool(Tool):
    def __init__(self, outcome: StepOutcome, name: str = "echo") -> None:
        self._outcome = outcome
        self._name = name
        self.seen: list[Any] = []

    def name(self) -> str:
        return self._name

    def spec(self) -> ToolSpec:
        return ToolSpec.make_function(self._name, "echo", {"type": "object"})

    async def execute(self, args: Any, ctx: ToolContext) -> StepOutcome:
        self.seen.append(args)
        return self._outcome


def _registry(*tools: Tool) -> ToolRegistry:
    reg = ToolRegistry()
    for tool in tools:
        reg.register(tool)
    return reg


@pytest.mark.asyncio
async def test_runtime_recovers_from_bad_json():
    rt = AgentRuntime(MockClient(), ToolRegistry(), "", RuntimeOptions())
    out = await rt.run_once("hi", lambda _e: None)
    assert out.result == "CURRENT_TASK_DONE"
    assert out.final_response.content == "done"


@pytest.mark.asyncio
async def test_history_records_user_and_summaries():
    rt = AgentRuntime(MockClient(), ToolRegistry(), "", RuntimeOptions())
    await rt.run_once("hi\nthere")
    assert rt.state.history_info == [
        "[USER]: hi there",
        "[Agent] read file",
        "[Agent] 直接回答了用户问题",
    ]


@pytest.mark.asyncio
async def test_direct_answer_emits_events():
    events = []
    rt = AgentRuntime(ScriptedClient([ChatResponse(content="hello")]), ToolRegistry())
    out = await rt.run_once("hi", events.append)
    assert out.result == "CURRENT_TASK_DONE"
    assert events == [TurnStarted(1), AssistantText("hello")]
    assert rt.state.messages == [ChatMessage.user("hi"), ChatMessage.assistant("hello")]


@pytest.mark.asyncio
async def test_exit_tool_returns_exited():
    tool = EchoTool(StepOutcome.exit({"bye": 1}))
    client = ScriptedClient([ChatResponse(content="x", tool_calls=[ToolCall.new("echo", {"a": 2})])])
    rt = AgentRuntime(client, _registry(tool))
    out = await rt.run_once("go")
    assert out.result == "EXITED"
    assert out.exit_data == {"bye": 1}
    assert tool.seen == [{"a": 2}]


@pytest.mark.asyncio
async def test_tool_without_next_prompt_finishes():
    tool = EchoTool(StepOutcome.done({"ok": True}))
    events = []
    client = ScriptedClient([ChatResponse(content="", tool_calls=[ToolCall.new("echo", {})])])
    rt = AgentRuntime(client, _registry(tool))
    out = await rt.run_once("go", events.append)
    assert out.result == "CURRENT_TASK_DONE"
    assert len(client.requests) == 1
    assert ToolStarted("echo", {}) in events
    assert ToolFinished("echo", {"ok": True}) in events


@pytest.mark.asyncio
async def test_max_turns_exceeded():
    tool = EchoTool(StepOutcome.next({"v": 1}, "continue"))
    rt = AgentRuntime(LoopingClient(), _registry(tool), "", RuntimeOptions(max_turns=2))
    out = await rt.run_once("go")
    assert out.result == "MAX_TURNS_EXCEEDED"
    prompt = out.exit_data["last_prompt"]
    assert prompt.startswith("<tool_result>[{")
    assert prompt.endswith("</tool_result>\ncontinue")
    assert len(tool.seen) == 2


@pytest.mark.asyncio
async def test_unknown_tool_emits_warning_and_continues():
    events = []
    client = ScriptedClient(
        [
            ChatResponse(content="try", tool_calls=[ToolCall.new("nope", {})]),
            ChatResponse(content="final"),
        ]
    )
    rt = AgentRuntime(client, ToolRegistry())
    out = await rt.run_once("go", events.append)
    assert out.result == "CURRENT_TASK_DONE"
    assert out.final_response.content == "final"
    assert WarningRaised("Tool nope failed: Unknown tool: nope") in events
    followup = client.requests[1].messages[-1]
    assert followup.role == Role.USER
    assert "### [WORKING MEMORY]" in followup.content
    assert '"status":"error"' in followup.content


@pytest.mark.asyncio
async def test_text_tool_calls_are_parsed():
    tool = EchoTool(StepOutcome.done({"ok": 1}))
    client = ScriptedClient(
        [ChatResponse(content='run <tool_use>{"name":"echo","arguments":{"p":"a"}}</tool_use>')]
    )
    rt = AgentRuntime(client, _registry(tool))
    out = await rt.run_once("go")
    assert tool.seen == [{"p": "a"}]
    assert out.final_response.content == "run"


@pytest.mark.asyncio
async def test_allowed_tools_filter_specs():
    client = ScriptedClient([ChatResponse(content="ok")])
    reg = _registry(EchoTool(StepOutcome.done(1)), EchoTool(StepOutcome.done(1), name="other"))
    rt = AgentRuntime(client, reg, "sys", RuntimeOptions(allowed_tools={"echo"}))
    await rt.run_once("go")
    assert [s.function.name for s in client.requests[0].tools] == ["echo"]
    assert client.requests[0].system == "sys"


@pytest.mark.asyncio
async def test_stream_sends_delta_for_first_turn():
    deltas = []
    rt = AgentRuntime(ScriptedClient([ChatResponse(content="streamed")]), ToolRegistry())
    out = await rt.run_once_stream("go", None, deltas.append)
    assert deltas == ["streamed"]
    assert out.result == "CURRENT_TASK_DONE"


@pytest.mark.asyncio
async def test_context_trimmed_to_budget():
    client = ScriptedClient([ChatResponse(content="ok")])
    rt = AgentRuntime(client, ToolRegistry(), "", RuntimeOptions(context_char_budget=10))
    for i in range(5):
        rt.state.messages.append(ChatMessage.user(f"question {i}"))
        rt.state.messages.append(ChatMessage.assistant(f"answer {i}"))
    await rt.run_once("hi")
    sent = client.requests[0].messages
    assert len(sent) == 9
    assert sent[0] == ChatMessage.user("question 1")
    assert sent[-1] == ChatMessage.user("hi")