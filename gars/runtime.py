"""The agent loop: ask the model, run the tools it calls, feed results back."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from gars.protocol import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    DeltaSink,
    LlmClient,
    Role,
    ToolCall,
    parse_text_tool_calls,
    smart_truncate,
    trim_history_tags,
)
from gars.tool import StepOutcome, ToolContext, ToolRegistry, WorkingMemory

__all__ = [
    "RuntimeOptions",
    "RuntimeState",
    "RuntimeEvent",
    "TurnStarted",
    "AssistantText",
    "ToolStarted",
    "ToolFinished",
    "WarningRaised",
    "RuntimeOutcome",
    "AgentRuntime",
]

CURRENT_TASK_DONE = "CURRENT_TASK_DONE"
EXITED = "EXITED"
MAX_TURNS_EXCEEDED = "MAX_TURNS_EXCEEDED"

_TAG_INNER_LIMIT = 800
_MIN_KEPT_MESSAGES = 9


@dataclass
class RuntimeOptions:
    max_turns: int = 70
    context_char_budget: int = 180_000
    cwd: Path = field(default_factory=Path.cwd)
    gars_home: Path = field(default_factory=lambda: Path(""))
    verbose: bool = True
    allowed_tools: frozenset[str] | set[str] | None = None


@dataclass
class RuntimeState:
    history_info: list[str] = field(default_factory=list)
    working: WorkingMemory = field(default_factory=WorkingMemory)
    messages: list[ChatMessage] = field(default_factory=list)
    current_turn: int = 0


class RuntimeEvent:
    """Base class of events reported while the agent runs."""


@dataclass
class TurnStarted(RuntimeEvent):
    turn: int


@dataclass
class AssistantText(RuntimeEvent):
    text: str


@dataclass
class ToolStarted(RuntimeEvent):
    name: str
    args: Any


@dataclass
class ToolFinished(RuntimeEvent):
    name: str
    data: Any


@dataclass
class WarningRaised(RuntimeEvent):
    message: str


@dataclass
class RuntimeOutcome:
    result: str = ""
    final_response: ChatResponse | None = None
    exit_data: Any = None


EventSink = Callable[[RuntimeEvent], None]


def _json_compact(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _extract_summary(content: str) -> str | None:
    open_tag = "<summary>"
    start = content.find(open_tag)
    if start < 0:
        return None
    start += len(open_tag)
    end = content.find("</summary>", start)
    if end < 0:
        return None
    return content[start:end].strip()


class AgentRuntime:
    """Drives one conversation with a model and a set of tools."""

    def __init__(
        self,
        client: LlmClient,
        tools: ToolRegistry,
        system_prompt: str = "",
        options: RuntimeOptions | None = None,
    ) -> None:
        self.client = client
        self.tools = tools
        self.system_prompt = str(system_prompt)
        self.options = options if options is not None else RuntimeOptions()
        self.state = RuntimeState()

    async def run_once(self, user_input: str, emit: EventSink | None = None) -> RuntimeOutcome:
        """Run turns for ``user_input`` until the model stops, exits or runs out of turns."""
        return await self._run(user_input, emit, None)

    async def run_once_stream(
        self, user_input: str, emit: EventSink | None, on_delta: DeltaSink
    ) -> RuntimeOutcome:
        """Like :meth:`run_once`, streaming the first turn's text to ``on_delta``."""
        return await self._run(user_input, emit, on_delta)

    async def _run(
        self, user_input: str, emit_to: EventSink | None, delta_sink: DeltaSink | None
    ) -> RuntimeOutcome:
        sinks = [emit_to] if emit_to is not None else []

        def emit(event: RuntimeEvent) -> None:
            for sink in sinks:
                sink(event)

        state = self.state
        state.history_info.append(
            f"[USER]: {smart_truncate(user_input.replace(chr(10), ' '), 200)}"
        )
        state.messages.append(ChatMessage.user(user_input))

        next_user_prompt = user_input
        last_response: ChatResponse | None = None
        for turn in range(1, self.options.max_turns + 1):
            state.current_turn = turn
            emit(TurnStarted(turn))
            self._trim_context()

            specs = self.tools.specs()
            allowed = self.options.allowed_tools
            if allowed is not None:
                specs = [s for s in specs if s.function.name in allowed]
            request = ChatRequest(
                system=self.system_prompt,
                messages=[dataclasses.replace(m) for m in state.messages],
                tools=specs,
            )
            if delta_sink is not None:
                sink, delta_sink = delta_sink, None
                response = await self.client.chat_stream(request, sink)
            else:
                response = await self.client.chat(request)

            fallback_calls, cleaned = parse_text_tool_calls(response.content)
            if not response.tool_calls and fallback_calls:
                response.tool_calls = fallback_calls
                response.content = cleaned
            if response.content.strip():
                emit(AssistantText(response.content))
            self._record_summary(response)

            state.messages.append(ChatMessage.assistant(response.content))
            if not response.tool_calls:
                return RuntimeOutcome(CURRENT_TASK_DONE, response, None)

            calls = list(response.tool_calls)
            tool_results: list[dict[str, Any]] = []
            next_prompts: list[str] = []
            exit_data: Any = None

            for index, call in enumerate(calls):
                ctx = self._make_tool_context(index, len(calls))
                emit(ToolStarted(call.name, call.arguments))
                try:
                    outcome = await self._dispatch_tool(call, ctx)
                except Exception as err:  # tool failures are reported back to the model
                    state.working = ctx.working
                    state.history_info = ctx.history_info
                    msg = f"Tool {call.name} failed: {err}"
                    emit(WarningRaised(msg))
                    tool_results.append(
                        {
                            "tool_use_id": call.id,
                            "name": call.name,
                            "content": {"status": "error", "msg": msg},
                        }
                    )
                    next_prompts.append(
                        self._make_tool_context(index, len(calls)).anchor_prompt()
                    )
                    continue
                state.working = ctx.working
                state.history_info = ctx.history_info
                emit(ToolFinished(call.name, outcome.data))
                if outcome.should_exit:
                    exit_data = outcome.data
                    break
                if outcome.data is not None:
                    tool_results.append(
                        {"tool_use_id": call.id, "name": call.name, "content": outcome.data}
                    )
                if outcome.next_prompt is not None and outcome.next_prompt.strip():
                    next_prompts.append(outcome.next_prompt)

            if exit_data is not None:
                return RuntimeOutcome(EXITED, response, exit_data)
            if not next_prompts:
                return RuntimeOutcome(CURRENT_TASK_DONE, response, None)

            next_user_prompt = (
                f"<tool_result>{_json_compact(tool_results)}</tool_result>\n"
                + "\n".join(next_prompts)
            )
            state.messages.append(ChatMessage.user(next_user_prompt))
            last_response = response

        return RuntimeOutcome(
            MAX_TURNS_EXCEEDED, last_response, {"last_prompt": next_user_prompt}
        )

    def _trim_context(self) -> None:
        messages = self.state.messages
        for message in messages:
            message.content = trim_history_tags(message.content, _TAG_INNER_LIMIT)

        def cost() -> int:
            return sum(len(m.content.encode("utf-8")) for m in messages)

        while len(messages) > _MIN_KEPT_MESSAGES and cost() > self.options.context_char_budget:
            del messages[0]
            while messages and messages[0].role != Role.USER:
                del messages[0]

    def _make_tool_context(self, tool_index: int, tool_count: int) -> ToolContext:
        return ToolContext(
            gars_home=self.options.gars_home,
            cwd=self.options.cwd,
            current_turn=self.state.current_turn,
            tool_index=tool_index,
            tool_count=tool_count,
            working=dataclasses.replace(self.state.working),
            history_info=list(self.state.history_info),
        )

    async def _dispatch_tool(self, call: ToolCall, ctx: ToolContext) -> StepOutcome:
        if call.name == "bad_json":
            return StepOutcome(
                data={"status": "error", "msg": call.arguments},
                next_prompt="bad_json: regenerate a valid tool_use block",
            )
        return await self.tools.execute(call.name, call.arguments, ctx)

    def _record_summary(self, response: ChatResponse) -> None:
        summary = _extract_summary(response.content)
        if summary is None:
            if response.tool_calls:
                summary = f"调用工具{response.tool_calls[0].name}"
            else:
                summary = "直接回答了用户问题"
        self.state.history_info.append(
            f"[Agent] {smart_truncate(summary.replace(chr(10), ''), 80)}"
        )