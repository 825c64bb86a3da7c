# gars

Building blocks for a local, tool-using LLM agent:

- **`gars.protocol`**: chat messages (`ChatMessage`, `Role`), tool calls and
  tool specs (`ToolCall`, `ToolSpec`, `ToolFunction`), `ChatRequest` /
  `ChatResponse`, and the abstract `LlmClient` (implement `name()` and
  `async chat()`; `chat_stream()` by default calls `chat()` and passes the
  whole reply to the delta callback once). Text helpers:
  `parse_text_tool_calls` pulls `<tool_use>` / `<tool_call>` JSON blocks (or
  a `[{"type":"tool_use", ...}]` array) out of model text, `smart_truncate`
  keeps the head and tail of long text, `trim_history_tags` shortens the
  inside of `<thinking>`, `<tool_result>`, `<history>` and similar tags, and
  `expand_file_refs` expands `{{file:path}}`, `{{file:path:start:end}}` and
  `{{glob:pattern}}` references.
- **`gars.tool`**: the abstract `Tool`, `ToolRegistry` (tools by name;
  unknown names raise `LookupError`), `ToolContext` with its working-memory
  `anchor_prompt()`, and `StepOutcome` (`done`, `next`, `exit`).
- **`gars.runtime`**: `AgentRuntime`, the turn loop that calls the model,
  dispatches tool calls, feeds results back and trims context. It reports
  `TurnStarted`, `AssistantText`, `ToolStarted`, `ToolFinished` and
  `WarningRaised` events and returns a `RuntimeOutcome` whose `result` is
  `CURRENT_TASK_DONE`, `EXITED` or `MAX_TURNS_EXCEEDED`.
- **`gars.task_runner`**: `run_task`, which joins a base system prompt and
  SOP texts (`assemble_system_prompt`), runs the runtime under an optional
  `time.monotonic()` deadline and returns a `TaskOutcome` whose `kind` is an
  `OutcomeKind` (`DONE`, `EXITED`, `MAX_TURNS`, `BUDGET_EXHAUSTED`).
- **`gars.plan_mode`**: Markdown plan files (`# Plan: ...`, `- [ ] 1. step`)
  read and written by `PlanFile`; `normalize_marker` maps aliases such as
  `done`, `delegate` or `skip` to `[✓]`, `[D]`, `[SKIP]`.
- **`gars.subagent`**: the file-based subagent protocol: a work directory
  per run holding `input.txt`, `output.txt`, `reply.txt`, `_stop`,
  `_keyinfo`, `_intervene` and `context.json`, with `allocate_workdir`,
  `write_input`, `append_output`, `append_round_end`, `write_reply`,
  `intervene`, `stop`, `snapshot`, `scan_runs` and `load_run`.
- **`gars.archive`**: `compress_text` strips system blocks, huge tool results
  and blank assistant lines from a session transcript; `compress_session`
  writes the result to a file named after the first and last timestamps it
  contains (`compute_stem`), or skips it below `min_bytes`; `summarize` gives
  a one-line summary.
- **`gars.cdp`**: Chrome DevTools helpers (`list_tabs`, `execute_js`,
  `scan_page`) against a browser started with `--remote-debugging-port`,
  configured by `BrowserConfig` (default `127.0.0.1:9222`).
- **`gars.connectors.common`**: types for chat connectors (`ChatTarget`,
  `UserInfo`, `Attachment`, `OutboundMessage`, `MessageEvent`,
  `CommandEvent`, `ConnectorCaps`, `ConnectorState`, `ConnectorContext`,
  `WebhookRequest`) and the abstract `Connector`, whose default
  `verify_webhook` raises `WebhookError`.

## Installing

```
pip install .
```

Tests:

```
pip install ".[test]"
pytest
```

## Example: a plan file

```python
from gars.plan_mode import PlanFile

plan = PlanFile.open_or_create("plans/demo/plan.md", "demo")
plan.set_steps(["collect data", "analyse", "report"])
plan.mark(1, "done", "ok")
plan.mark(2, "delegate", None)
print(plan.status_summary())   # (1, 0, 3)
print(plan.render())
```

## Example: running a task

```python
import asyncio
from gars.protocol import ChatResponse, LlmClient
from gars.tool import ToolRegistry
from gars.task_runner import TaskRunOpts, run_task


class EchoClient(LlmClient):
    def name(self):
        return "echo"

    async def chat(self, request):
        return ChatResponse(content="hello from the model")


async def main():
    opts = TaskRunOpts("say hi", sop_contents=["Answer briefly."], max_turns=5)
    outcome = await run_task(EchoClient(), ToolRegistry(), opts, print)
    print(outcome.kind, outcome.reply, outcome.is_complete())

asyncio.run(main())
```

A tool subclasses `Tool`, returns its `ToolSpec` from `spec()` (for example
`ToolSpec.make_function(name, description, json_schema)`) and is added with
`ToolRegistry.register`. A tool that raises is reported back to the model as
an error result instead of ending the run.

## What this package does not do

- It has no command-line program, no server and no REST API; it is a library.
- It ships no concrete LLM backend: you supply an `LlmClient`.
- It ships no concrete tools beyond the registry and interface.
- It has no chat platform implementations: `gars.connectors.common` only
  defines the types and the `Connector` interface to implement.
- It has no browser extension bridge; browser access goes through
  `gars.cdp` only.
- `gars.archive` compresses and summarises transcripts but keeps no search
  index or database of archived sessions.