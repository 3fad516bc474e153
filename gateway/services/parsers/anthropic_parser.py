from gateway.services.parsers.base import (
    NativeEvent,
    ProviderError,
    SSEParser,
    TextDelta,
    UsageReport,
    kind_for_error_type,
    normalize_finish_reason,
)


class AnthropicStreamParser(SSEParser):
    """Messages API SSE stream.

    Every ``data:`` record repeats its event name in ``type``:
    ``message_start`` (input tokens), ``content_block_delta`` (text),
    ``message_delta`` (stop reason and running output tokens), ``error``,
    ``ping``, and the terminal ``message_stop``.
    """

    def parse_record(self, data: str) -> list[NativeEvent]:
        record = self.load_json(data)
        if not isinstance(record, dict):
            return []

        kind = record.get("type")
        if kind == "content_block_delta":
            delta = record.get("delta") or {}
            if delta.get("type", "text_delta") == "text_delta" and delta.get("text"):
                return [TextDelta(delta["text"])]
            return []

        if kind == "message_start":
            usage = (record.get("message") or {}).get("usage") or {}
            if "input_tokens" in usage:
                return [UsageReport(prompt_tokens=usage["input_tokens"])]
            return []

        if kind == "message_delta":
            stop_reason = (record.get("delta") or {}).get("stop_reason")
            if stop_reason:
                self.finish_reason = normalize_finish_reason(stop_reason)
            usage = record.get("usage") or {}
            if "output_tokens" in usage:
                return [UsageReport(completion_tokens=usage["output_tokens"])]
            return []

        if kind == "message_stop":
            return [self.finish()]

        if kind == "error":
            error = record.get("error") or {}
            return [
                ProviderError(
                    kind_for_error_type(error.get("type")),
                    error.get("message") or "Anthropic stream error",
                )
            ]

        # ping, content_block_start, content_block_stop
        return []
