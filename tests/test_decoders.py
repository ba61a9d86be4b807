"""Tests for the wire decoders in modelbridge.llm.decoders."""

from __future__ import annotations

import json

import pytest

from modelbridge.llm.decoders import (
    AnthropicBlockDecoder,
    OpenAIDeltaDecoder,
    decode_chunks,
    decode_completion,
    decode_stream,
    extract_xml_fallback,
    parse_completion,
)
from modelbridge.llm.decoders.sse import SSELineBuffer, data_payload
from modelbridge.llm.types import (
    MessageEnd,
    StreamError,
    TextDelta,
    ToolUseEnd,
    ToolUseStart,
)
from tests.mock_providers import (
    anthropic_text_body,
    anthropic_tool_body,
    byte_chunks,
    openai_text_body,
    openai_text_frame,
    openai_tool_frame,
    split_at,
    sse,
)


def summarize(events):
    """Events as comparable tuples (message ids are random)."""
    out = []
    for e in events:
        if isinstance(e, TextDelta):
            out.append(("text", e.text))
        elif isinstance(e, ToolUseStart):
            out.append(("start", e.id, e.name))
        elif isinstance(e, ToolUseEnd):
            out.append(("end", e.id, e.name, e.input))
        elif isinstance(e, MessageEnd):
            calls = [(tc.id, tc.name, tc.input) for tc in e.message.tool_calls or []]
            out.append(("message_end", e.message.content, calls))
        elif isinstance(e, StreamError):
            out.append(("error", e.message))
    return out


MIXED_OPENAI_BODY = (
    openai_text_frame("Let me look. ")
    + openai_tool_frame(0, '{"pa', call_id="call_a", name="ls")
    + openai_tool_frame(0, 'th": "/tm')
    + openai_tool_frame(0, 'p"}')
    + openai_tool_frame(1, "", call_id="call_b", name="cat")
    + openai_tool_frame(1, '{"file": "café.txt"}')
    + sse("[DONE]")
).encode("utf-8")

MIXED_OPENAI_EXPECTED = [
    ("text", "Let me look. "),
    ("start", "call_a", "ls"),
    ("end", "call_a", "ls", {"path": "/tmp"}),
    ("start", "call_b", "cat"),
    ("end", "call_b", "cat", {"file": "café.txt"}),
    (
        "message_end",
        "Let me look. ",
        [("call_a", "ls", {"path": "/tmp"}), ("call_b", "cat", {"file": "café.txt"})],
    ),
]


class TestOpenAIDeltaDecoder:
    """Index-addressed delta streams."""

    def test_text_scenario(self):
        events = decode_chunks(OpenAIDeltaDecoder(), [openai_text_body("Hel", "lo")])
        assert summarize(events) == [
            ("text", "Hel"),
            ("text", "lo"),
            ("message_end", "Hello", []),
        ]

    def test_text_and_tool_calls(self):
        events = decode_chunks(OpenAIDeltaDecoder(), [MIXED_OPENAI_BODY])
        assert summarize(events) == MIXED_OPENAI_EXPECTED

    def test_index_change_closes_previous_call(self):
        events = decode_chunks(OpenAIDeltaDecoder(), [MIXED_OPENAI_BODY])
        kinds = [e.type for e in events if e.type.startswith("tool_use")]
        assert kinds == ["tool_use_start", "tool_use_end", "tool_use_start", "tool_use_end"]

    def test_missing_id_is_synthesized(self):
        body = openai_tool_frame(0, '{"a": 1}', name="f") + sse("[DONE]")
        events = decode_chunks(OpenAIDeltaDecoder(), [body])
        start = events[0]
        assert isinstance(start, ToolUseStart)
        assert start.id.startswith("tool_")
        assert start.id.endswith("_0")
        assert events[1] == ToolUseEnd(id=start.id, name="f", input={"a": 1})

    def test_malformed_frame_is_skipped(self):
        body = (
            openai_text_frame("a")
            + "data: {not json at all\n\n"
            + "data: [1, 2]\n\n"
            + openai_text_frame("b")
            + sse("[DONE]")
        )
        decoder = OpenAIDeltaDecoder()
        events = decode_chunks(decoder, [body])
        assert summarize(events) == [("text", "a"), ("text", "b"), ("message_end", "ab", [])]
        assert decoder.skipped_frames == 2

    def test_stream_end_without_done_flushes_open_call(self):
        body = openai_tool_frame(0, '{"x": ', call_id="c1", name="f") + openai_tool_frame(0, "1}")
        events = decode_chunks(OpenAIDeltaDecoder(), [body])
        assert summarize(events) == [
            ("start", "c1", "f"),
            ("end", "c1", "f", {"x": 1}),
            ("message_end", "", [("c1", "f", {"x": 1})]),
        ]

    def test_nothing_after_done(self):
        decoder = OpenAIDeltaDecoder()
        decoder.feed(openai_text_body("hi"))
        assert decoder.terminated
        assert decoder.feed(openai_text_frame("late")) == []
        assert decoder.finish() == []

    def test_comment_and_event_lines_ignored(self):
        body = ": keep-alive\n\nevent: chunk\n" + openai_text_body("x")
        assert summarize(decode_chunks(OpenAIDeltaDecoder(), [body]))[0] == ("text", "x")

    def test_usage_recorded(self):
        body = (
            openai_text_frame("x")
            + sse({"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 1}})
            + sse("[DONE]")
        )
        decoder = OpenAIDeltaDecoder()
        decode_chunks(decoder, [body])
        assert decoder.usage.prompt_tokens == 3
        assert decoder.usage.total_tokens == 4

    def test_unterminated_malformed_tool_arguments(self):
        body = openai_tool_frame(0, '{"oops', call_id="c", name="f") + sse("[DONE]")
        events = decode_chunks(OpenAIDeltaDecoder(), [body])
        assert events[1] == ToolUseEnd(id="c", name="f", input={})


class TestChunkBoundaryInvariance:
    """Splitting the byte stream anywhere must not change the events."""

    def test_every_single_split(self):
        for offset in range(len(MIXED_OPENAI_BODY) + 1):
            chunks = split_at(MIXED_OPENAI_BODY, offset)
            events = decode_chunks(OpenAIDeltaDecoder(), chunks)
            assert summarize(events) == MIXED_OPENAI_EXPECTED, f"split at {offset}"

    def test_two_splits(self):
        n = len(MIXED_OPENAI_BODY)
        for a in range(0, n, 7):
            for b in range(a, n, 13):
                events = decode_chunks(OpenAIDeltaDecoder(), split_at(MIXED_OPENAI_BODY, a, b))
                assert summarize(events) == MIXED_OPENAI_EXPECTED, f"split at {a},{b}"

    def test_byte_at_a_time(self):
        chunks = [MIXED_OPENAI_BODY[i:i + 1] for i in range(len(MIXED_OPENAI_BODY))]
        assert summarize(decode_chunks(OpenAIDeltaDecoder(), chunks)) == MIXED_OPENAI_EXPECTED

    def test_anthropic_every_split(self):
        body = anthropic_tool_body("t9", "grep", ['{"pattern": "✓', ' ok", "n": 2}']).encode()
        expected = summarize(decode_chunks(AnthropicBlockDecoder(), [body]))
        assert expected[1] == ("end", "t9", "grep", {"pattern": "✓ ok", "n": 2})
        for offset in range(len(body) + 1):
            events = decode_chunks(AnthropicBlockDecoder(), split_at(body, offset))
            assert summarize(events) == expected, f"split at {offset}"

    def test_multibyte_character_straddles_chunks(self):
        body = openai_text_body("héllo wörld ✓").encode("utf-8")
        idx = body.index("✓".encode("utf-8")) + 1
        events = decode_chunks(OpenAIDeltaDecoder(), split_at(body, idx))
        assert events[0] == TextDelta(text="héllo wörld ✓")


class TestAnthropicBlockDecoder:
    """Content-block-addressed streams."""

    def test_tool_scenario(self):
        body = anthropic_tool_body("t1", "ls", ['{"path":', '"/"}'])
        events = decode_chunks(AnthropicBlockDecoder(), [body])
        assert events[0] == ToolUseStart(id="t1", name="ls")
        assert events[1] == ToolUseEnd(id="t1", name="ls", input={"path": "/"})
        assert isinstance(events[2], MessageEnd)
        assert len(events) == 3

    def test_text_stream_and_usage(self):
        decoder = AnthropicBlockDecoder()
        events = decode_chunks(decoder, [anthropic_text_body("Hel", "lo")])
        assert summarize(events) == [("text", "Hel"), ("text", "lo"), ("message_end", "Hello", [])]
        assert decoder.usage.completion_tokens == 5

    def test_error_event_terminates(self):
        body = (
            sse({"type": "content_block_start", "index": 0,
                 "content_block": {"type": "tool_use", "id": "t1", "name": "ls"}})
            + sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
            + sse({"type": "message_stop"})
        )
        events = decode_chunks(AnthropicBlockDecoder(), [body])
        assert summarize(events) == [
            ("start", "t1", "ls"),
            ("error", "overloaded_error: Overloaded"),
        ]

    def test_lost_stop_closes_previous_call(self):
        body = (
            sse({"type": "content_block_start", "index": 0,
                 "content_block": {"type": "tool_use", "id": "a", "name": "one"}})
            + sse({"type": "content_block_delta", "index": 0,
                   "delta": {"type": "input_json_delta", "partial_json": "{}"}})
            + sse({"type": "content_block_start", "index": 1,
                   "content_block": {"type": "tool_use", "id": "b", "name": "two"}})
            + sse({"type": "content_block_stop", "index": 1})
            + sse({"type": "message_stop"})
        )
        events = decode_chunks(AnthropicBlockDecoder(), [body])
        assert summarize(events)[:4] == [
            ("start", "a", "one"),
            ("end", "a", "one", {}),
            ("start", "b", "two"),
            ("end", "b", "two", {}),
        ]

    def test_malformed_frame_is_skipped(self):
        clean = anthropic_tool_body("t1", "ls", ['{"path":', '"/"}'])
        corrupt = (
            'event: content_block_delta\ndata: {"type": "content_block_delta", "index": 0,\n\n'
            + "data: [1, 2]\n\n"
        )
        body = clean.replace(
            "event: content_block_stop", corrupt + "event: content_block_stop", 1
        )
        decoder = AnthropicBlockDecoder()
        events = decode_chunks(decoder, [body])
        assert summarize(events) == summarize(decode_chunks(AnthropicBlockDecoder(), [clean]))
        assert events[1] == ToolUseEnd(id="t1", name="ls", input={"path": "/"})
        assert decoder.skipped_frames == 2

    def test_ping_and_unknown_events_ignored(self):
        body = sse({"type": "ping"}) + sse({"type": "vendor_thing", "x": 1}) + anthropic_text_body("x")
        assert summarize(decode_chunks(AnthropicBlockDecoder(), [body]))[0] == ("text", "x")


class TestDecodeStream:
    async def test_async_source(self):
        body = openai_text_body("a", "b")
        events = [e async for e in decode_stream(OpenAIDeltaDecoder(), byte_chunks(body[:10], body[10:]))]
        assert summarize(events) == [("text", "a"), ("text", "b"), ("message_end", "ab", [])]

    async def test_should_stop_discards(self):
        body = openai_text_frame("a") + openai_text_frame("b") + sse("[DONE]")
        frames = body.split("\n\n")
        chunks = [f + "\n\n" for f in frames if f]
        seen = []

        def stop():
            return len(seen) >= 1

        decoder = OpenAIDeltaDecoder()
        async for event in decode_stream(decoder, byte_chunks(*chunks), should_stop=stop):
            seen.append(event)
        assert summarize(seen) == [("text", "a")]
        assert decoder.terminated


class TestCompletion:
    """Non-streaming fallback replays a full document as events."""

    def test_openai_document(self):
        doc = {
            "choices": [{
                "message": {
                    "content": "Listing.",
                    "tool_calls": [{
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "ls", "arguments": '{"path": "/"}'},
                    }],
                },
                "finish_reason": "tool_calls",
            }],
            "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
        }
        completion = parse_completion(json.dumps(doc))
        assert completion.usage.total_tokens == 12
        assert summarize(decode_completion(completion)) == [
            ("start", "call_1", "ls"),
            ("end", "call_1", "ls", {"path": "/"}),
            ("text", "Listing."),
            ("message_end", "Listing.", [("call_1", "ls", {"path": "/"})]),
        ]

    def test_anthropic_document(self):
        doc = {
            "content": [
                {"type": "text", "text": "Sure. "},
                {"type": "tool_use", "id": "toolu_1", "name": "ls", "input": {"path": "/"}},
                {"type": "text", "text": "Done."},
            ],
            "stop_reason": "tool_use",
        }
        completion = parse_completion(doc)
        assert completion.text == "Sure. Done."
        assert completion.tool_calls[0].id == "toolu_1"
        assert summarize(decode_completion(completion))[-1][0] == "message_end"

    def test_plain_text(self):
        events = decode_completion(parse_completion({"choices": [{"message": {"content": "hi"}}]}))
        assert summarize(events) == [("text", "hi"), ("message_end", "hi", [])]

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            parse_completion("[1, 2]")

    def test_xml_invoke_fallback(self):
        text = (
            "Checking.\n"
            '<invoke name="read_file"><parameter name="path">/etc/hosts</parameter>'
            '<parameter name="lines">20</parameter></invoke>'
        )
        completion = extract_xml_fallback(parse_completion({"choices": [{"message": {"content": text}}]}))
        assert completion.text == "Checking."
        assert len(completion.tool_calls) == 1
        call = completion.tool_calls[0]
        assert call.name == "read_file"
        assert call.input == {"path": "/etc/hosts", "lines": 20}
        assert call.id.startswith("xml_tool_")

    def test_xml_function_calls_fallback(self):
        text = (
            "<function_calls><function><name>ls</name>"
            '<arguments>{"path": "/var"}</arguments></function></function_calls>'
        )
        completion = extract_xml_fallback(parse_completion({"choices": [{"message": {"content": text}}]}))
        assert [(c.name, c.input) for c in completion.tool_calls] == [("ls", {"path": "/var"})]
        assert completion.text == ""

    def test_structured_calls_win_over_xml(self):
        doc = {"choices": [{"message": {
            "content": '<invoke name="x"></invoke>',
            "tool_calls": [{"id": "c", "function": {"name": "y", "arguments": "{}"}}],
        }}]}
        completion = extract_xml_fallback(parse_completion(doc))
        assert [c.name for c in completion.tool_calls] == ["y"]


class TestSSELineBuffer:
    def test_crlf_and_partial_lines(self):
        buf = SSELineBuffer()
        assert buf.feed(b"data: a\r") == []
        assert buf.feed(b"\ndata: b") == ["data: a"]
        assert buf.flush() == ["data: b"]

    def test_data_payload(self):
        assert data_payload("data: {}") == "{}"
        assert data_payload("data:[DONE]") == "[DONE]"
        assert data_payload("event: ping") is None
