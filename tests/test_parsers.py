"""Byte-level parser behaviour: chunk boundaries, sentinels, malformed records."""
import json

import pytest

from gateway.services.events import ErrorKind
from gateway.services.parsers.anthropic_parser import AnthropicStreamParser
from gateway.services.parsers.base import (
    Completion,
    ProviderError,
    TextDelta,
    UsageReport,
    kind_for_error_type,
    normalize_finish_reason,
)
from gateway.services.parsers.gemini_parser import GeminiStreamParser
from gateway.services.parsers.ollama_parser import OllamaStreamParser
from gateway.services.parsers.openai_parser import OpenAIStreamParser
from fakes import openai_body, openai_chunk, sse


def _run(parser, chunks):
    events = []
    for chunk in chunks:
        events.extend(parser.feed(chunk))
    events.extend(parser.close())
    return events


def _split(data: bytes, *cuts):
    bounds = [0, *cuts, len(data)]
    return [data[a:b] for a, b in zip(bounds, bounds[1:])]


def _text(events):
    return "".join(e.text for e in events if isinstance(e, TextDelta))


ANTHROPIC_BODY = (
    b"event: message_start\n"
    + sse({"type": "message_start", "message": {"usage": {"input_tokens": 12, "output_tokens": 1}}})
    + b"event: ping\n"
    + sse({"type": "ping"})
    + sse({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}})
    + sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}})
    + sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " there"}})
    + sse({"type": "content_block_stop", "index": 0})
    + sse({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 7}})
    + sse({"type": "message_stop"})
)

GEMINI_BODY = sse(
    {"candidates": [{"content": {"role": "model", "parts": [{"text": "Bon"}]}}],
     "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 1}},
    {"candidates": [{"content": {"role": "model", "parts": [{"text": "jour"}]}, "finishReason": "STOP"}],
     "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2}},
).replace(b"\n", b"\r\n")

OLLAMA_BODY = (
    json.dumps({"model": "llama3", "message": {"role": "assistant", "content": "Hi"}, "done": False}).encode()
    + b"\n"
    + json.dumps({"model": "llama3", "message": {"role": "assistant", "content": "!"}, "done": False}).encode()
    + b"\n"
    + json.dumps({"model": "llama3", "message": {"role": "assistant", "content": ""}, "done": True,
                  "done_reason": "stop", "prompt_eval_count": 9, "eval_count": 2}).encode()
    + b"\n"
)


@pytest.mark.parametrize(
    "parser_cls, body",
    [
        (OpenAIStreamParser, openai_body("Hel", "lo, ", "wörld", usage={"prompt_tokens": 5, "completion_tokens": 3})),
        (AnthropicStreamParser, ANTHROPIC_BODY),
        (GeminiStreamParser, GEMINI_BODY),
        (OllamaStreamParser, OLLAMA_BODY),
    ],
)
def test_chunk_boundaries_do_not_change_events(parser_cls, body):
    whole = _run(parser_cls(), [body])
    third = len(body) // 3
    split = _run(parser_cls(), _split(body, third, 2 * third))
    bytewise = _run(parser_cls(), [body[i:i + 1] for i in range(len(body))])

    assert _text(split) == _text(whole) == _text(bytewise)
    non_text = [e for e in whole if not isinstance(e, TextDelta)]
    assert [e for e in split if not isinstance(e, TextDelta)] == non_text
    assert [e for e in bytewise if not isinstance(e, TextDelta)] == non_text
    assert isinstance(whole[-1], Completion)


class TestOpenAIParser:
    def test_text_usage_and_finish(self):
        body = openai_body("Hello", " world", usage={"prompt_tokens": 5, "completion_tokens": 2})
        events = _run(OpenAIStreamParser(), [body])
        assert _text(events) == "Hello world"
        assert UsageReport(prompt_tokens=5, completion_tokens=2) in events
        assert events[-1] == Completion("stop")

    def test_multibyte_character_split_across_chunks(self):
        body = openai_body("naïve ☕")
        cut = body.index("☕".encode()) + 1
        events = _run(OpenAIStreamParser(), _split(body, cut))
        assert _text(events) == "naïve ☕"

    def test_malformed_record_is_skipped(self):
        body = sse(openai_chunk("a")) + b"data: {not json\n\n" + openai_body("b")
        parser = OpenAIStreamParser()
        events = _run(parser, [body])
        assert _text(events) == "ab"
        assert parser.parse_errors == 1
        assert isinstance(events[-1], Completion)

    def test_comments_and_other_fields_ignored(self):
        body = b": keep-alive\nevent: chunk\nid: 7\n" + openai_body("ok")
        assert _text(_run(OpenAIStreamParser(), [body])) == "ok"

    def test_nothing_after_done(self):
        parser = OpenAIStreamParser()
        events = parser.feed(openai_body("x") + sse(openai_chunk("late")))
        assert _text(events) == "x"
        assert parser.feed(sse(openai_chunk("later"))) == []

    def test_eof_with_finish_reason_but_no_sentinel(self):
        events = _run(OpenAIStreamParser(), [openai_body("x", done=False)])
        assert events[-1] == Completion("stop")

    def test_eof_without_any_marker_is_incomplete(self):
        events = _run(OpenAIStreamParser(), [sse(openai_chunk("partial"))])
        assert not any(isinstance(e, Completion) for e in events)

    def test_unterminated_last_line_flushed_on_close(self):
        body = openai_body("x", done=False) + b"data: [DONE]"
        parser = OpenAIStreamParser()
        assert not any(isinstance(e, Completion) for e in parser.feed(body))
        assert parser.close() == [Completion("stop")]

    def test_full_message_snapshots_yield_only_new_suffix(self):
        body = sse(
            {"choices": [{"delta": {}, "message": {"content": "Par"}}]},
            {"choices": [{"delta": {}, "message": {"content": "Paris"}, "finish_reason": "stop"}]},
            "[DONE]",
        )
        events = _run(OpenAIStreamParser(), [body])
        assert [e.text for e in events if isinstance(e, TextDelta)] == ["Par", "is"]

    def test_error_record(self):
        body = sse({"error": {"message": "Rate limit reached", "type": "rate_limit_exceeded"}})
        events = _run(OpenAIStreamParser(), [body])
        assert events == [ProviderError(ErrorKind.RATE_LIMITED, "Rate limit reached")]


class TestAnthropicParser:
    def test_usage_split_between_start_and_delta(self):
        events = _run(AnthropicStreamParser(), [ANTHROPIC_BODY])
        usage = [e for e in events if isinstance(e, UsageReport)]
        assert usage == [UsageReport(prompt_tokens=12), UsageReport(completion_tokens=7)]
        assert _text(events) == "Hello there"
        assert events[-1] == Completion("stop")

    def test_max_tokens_normalized(self):
        body = (
            sse({"type": "message_delta", "delta": {"stop_reason": "max_tokens"}, "usage": {"output_tokens": 3}})
            + sse({"type": "message_stop"})
        )
        assert _run(AnthropicStreamParser(), [body])[-1] == Completion("length")

    def test_overloaded_error(self):
        body = sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        assert _run(AnthropicStreamParser(), [body]) == [
            ProviderError(ErrorKind.UPSTREAM_SERVER, "Overloaded")
        ]


class TestGeminiParser:
    def test_crlf_lines_and_finish_at_eof(self):
        events = _run(GeminiStreamParser(), [GEMINI_BODY])
        assert _text(events) == "Bonjour"
        assert events[-1] == Completion("stop")
        assert [e for e in events if isinstance(e, UsageReport)][-1] == UsageReport(4, 2)

    def test_safety_finish(self):
        body = sse({"candidates": [{"finishReason": "SAFETY"}]})
        assert _run(GeminiStreamParser(), [body])[-1] == Completion("content_filter")

    def test_error_status(self):
        body = sse({"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}})
        events = _run(GeminiStreamParser(), [body])
        assert events == [ProviderError(ErrorKind.RATE_LIMITED, "Quota exceeded")]


class TestOllamaParser:
    def test_final_record_carries_usage(self):
        events = _run(OllamaStreamParser(), [OLLAMA_BODY])
        assert _text(events) == "Hi!"
        assert UsageReport(prompt_tokens=9, completion_tokens=2) in events
        assert events[-1] == Completion("stop")

    def test_error_line(self):
        body = b'{"error": "model \\"nope\\" not found"}\n'
        events = _run(OllamaStreamParser(), [body])
        assert events == [ProviderError(ErrorKind.CONFIGURATION, 'model "nope" not found')]

    def test_blank_lines_ignored(self):
        parser = OllamaStreamParser()
        assert parser.feed(b"\n\r\n") == []
        assert parser.parse_errors == 0


class TestHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("end_turn", "stop"),
            ("STOP", "stop"),
            ("max_tokens", "length"),
            ("SAFETY", "content_filter"),
            ("tool_calls", "tool_calls"),
            (None, None),
        ],
    )
    def test_normalize_finish_reason(self, raw, expected):
        assert normalize_finish_reason(raw) == expected

    def test_kind_for_error_type(self):
        assert kind_for_error_type("insufficient_quota") is ErrorKind.RATE_LIMITED
        assert kind_for_error_type("authentication_error") is ErrorKind.AUTHENTICATION
        assert kind_for_error_type("invalid_request_error") is ErrorKind.CONFIGURATION
        assert kind_for_error_type(None) is ErrorKind.UPSTREAM_SERVER


@pytest.mark.parametrize(
    "parser_cls, bad, good",
    [
        (OpenAIStreamParser, sse({"choices": [None]}), openai_body("ok")),
        (OpenAIStreamParser, sse({"choices": [{"delta": "x"}]}), openai_body("ok")),
        (
            AnthropicStreamParser,
            sse({"type": "content_block_delta", "delta": "x"}),
            sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "ok"}},
                {"type": "message_stop"}),
        ),
        (
            GeminiStreamParser,
            sse({"error": "boom"}),
            sse({"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]}),
        ),
        (
            OllamaStreamParser,
            b'{"message": "x", "done": false}\n',
            b'{"message": {"content": "ok"}, "done": true}\n',
        ),
    ],
)
def test_wrong_shape_record_is_skipped(parser_cls, bad, good):
    parser = parser_cls()
    events = _run(parser, [bad + good])
    assert _text(events) == "ok"
    assert parser.parse_errors == 1
    assert isinstance(events[-1], Completion)
