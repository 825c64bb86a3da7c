import pytest

from gars.protocol import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    LlmClient,
    Role,
    ToolCall,
    ToolSpec,
    expand_file_refs,
    parse_text_tool_calls,
    smart_truncate,
    trim_history_tags,
)


def test_parses_xml_tool_call():
    text = 'hello <tool_use>{"name":"file_read","arguments":{"path":"a"}}</tool_use>'
    calls, cleaned = parse_text_tool_calls(text)
    assert cleaned == "hello"
    assert calls[0].name == "file_read"
    assert calls[0].arguments["path"] == "a"


def test_trims_tags():
    text = (
        "<history>abcdefghijklmnopqrstuvwxyzabcdefghijklmnopqrstuvwxyz"
        "abcdefghijklmnopqrstuvwxyz</history>"
    )
    trimmed = trim_history_tags(text, 40)
    assert "truncated" in trimmed
    assert trimmed.startswith("<history>")
    assert trimmed.endswith("</history>")


def test_tool_call_tag_with_alternate_keys():
    text = '<tool_call>{"function":"x","params":{"a":1},"id":"c1"}</tool_call> tail'
    calls, cleaned = parse_text_tool_calls(text)
    assert cleaned == "tail"
    assert len(calls) == 1
    assert calls[0].name == "x"
    assert calls[0].arguments == {"a": 1}
    assert calls[0].id == "c1"


def test_fenced_json_body():
    text = '<tool_use>```json\n{"name":"a"}```</tool_use>'
    calls, cleaned = parse_text_tool_calls(text)
    assert cleaned == ""
    assert calls[0].name == "a"
    assert calls[0].arguments is None


def test_bad_json_becomes_bad_json_call():
    calls, _ = parse_text_tool_calls("<tool_use>{not json}</tool_use>")
    assert calls[0].name == "bad_json"
    assert calls[0].arguments["msg"].startswith("Failed to parse tool_use JSON:")


def test_unclosed_tag_keeps_text():
    text = '  before <tool_use>{"name":"x"}  '
    calls, cleaned = parse_text_tool_calls(text)
    assert calls == []
    assert cleaned == 'before <tool_use>{"name":"x"}'


def test_tool_use_array_fallback():
    text = 'pre [{"type":"tool_use","id":"t1","name":"n","input":{"k":2}}]'
    calls, cleaned = parse_text_tool_calls(text)
    assert cleaned == "pre"
    assert calls[0].id == "t1"
    assert calls[0].name == "n"
    assert calls[0].arguments == {"k": 2}


def test_multiple_calls_in_order():
    text = '<tool_use>{"name":"a"}</tool_use> mid <tool_call>{"name":"b"}</tool_call>'
    calls, cleaned = parse_text_tool_calls(text)
    assert [c.name for c in calls] == ["a", "b"]
    assert cleaned == "mid"


def test_tool_call_new_id():
    call = ToolCall.new("x", {"a": 1})
    assert call.id.startswith("toolu_")
    assert len(call.id) == len("toolu_") + 32
    assert call.id != ToolCall.new("x", {}).id


def test_smart_truncate_short_and_small():
    assert smart_truncate("hello", 10) == "hello"
    assert smart_truncate("abcdefghijkl", 5) == "abcde"


def test_smart_truncate_long():
    data = "a" * 50 + "b" * 50
    assert smart_truncate(data, 40) == "aaaaaa\n...[truncated]...\nbbbbbb"


def test_trim_history_tags_short_and_unclosed():
    text = "x <think>short</think> <tool_result>open"
    assert trim_history_tags(text, 40) == text


def test_expand_file_whole_and_range(tmp_path):
    (tmp_path / "f.txt").write_text("one\ntwo\nthree\n", encoding="utf-8")
    assert expand_file_refs("A{{file:f.txt}}B", tmp_path) == "Aone\ntwo\nthree\nB"
    assert expand_file_refs("{{ file:f.txt:2:3 }}", tmp_path) == "two\nthree"


def test_expand_file_absolute(tmp_path):
    path = tmp_path / "g.txt"
    path.write_text("abs", encoding="utf-8")
    assert expand_file_refs("{{file:" + str(path) + "}}", "/nonexistent") == "abs"


def test_expand_file_bad_range(tmp_path):
    (tmp_path / "f.txt").write_text("one\ntwo\n", encoding="utf-8")
    with pytest.raises(ValueError):
        expand_file_refs("{{file:f.txt:0:1}}", tmp_path)
    with pytest.raises(ValueError):
        expand_file_refs("{{file:f.txt:1:5}}", tmp_path)


def test_expand_file_bad_spec(tmp_path):
    with pytest.raises(ValueError):
        expand_file_refs("{{file:f.txt:1}}", tmp_path)


def test_expand_missing_file(tmp_path):
    with pytest.raises(OSError):
        expand_file_refs("{{file:missing.txt}}", tmp_path)


def test_expand_keeps_other_braces(tmp_path):
    assert expand_file_refs("{{ foo }} and {{ open", tmp_path) == "{{foo}} and {{ open"


def test_expand_glob(tmp_path):
    (tmp_path / "a.txt").write_text("AAA", encoding="utf-8")
    (tmp_path / "b.txt").write_text("BBB", encoding="utf-8")
    (tmp_path / "c.md").write_text("CCC", encoding="utf-8")
    out = expand_file_refs("{{glob:*.txt}}", tmp_path)
    assert f"# ===== {tmp_path / 'a.txt'} =====\nAAA" in out
    assert "BBB" in out
    assert "CCC" not in out


def test_role_and_messages():
    assert Role.USER.value == "user"
    msg = ChatMessage.user("hi")
    assert msg.role is Role.USER
    assert msg.to_dict() == {"role": "user", "content": "hi"}
    assert ChatMessage.assistant("yo").role is Role.ASSISTANT


def test_tool_spec_function():
    spec = ToolSpec.make_function("read", "Read a file", {"type": "object"})
    assert spec.kind == "function"
    assert spec.to_dict()["function"]["name"] == "read"


class _EchoClient(LlmClient):
    def name(self):
        return "echo"

    async def chat(self, request):
        return ChatResponse(content=request.messages[-1].content)


@pytest.mark.asyncio
async def test_chat_stream_default_emits_content():
    chunks = []
    client = _EchoClient()
    resp = await client.chat_stream(
        ChatRequest(messages=[ChatMessage.user("hey")]), chunks.append
    )
    assert resp.content == "hey"
    assert chunks == ["hey"]


@pytest.mark.asyncio
async def test_chat_stream_default_skips_empty():
    chunks = []
    resp = await _EchoClient().chat_stream(
        ChatRequest(messages=[ChatMessage.user("")]), chunks.append
    )
    assert resp.content == ""
    assert chunks == []