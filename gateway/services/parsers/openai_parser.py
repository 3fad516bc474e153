from gateway.services.parsers.base import (
    NativeEvent,
    ProviderError,
    SSEParser,
    TextDelta,
    UsageReport,
    kind_for_error_type,
    normalize_finish_reason,
)


class OpenAIStreamParser(SSEParser):
    """Chat Completions SSE stream, also spoken by Perplexity.

    Records look like ``data: {"choices": [{"delta": {"content": "..."}}]}``;
    the stream ends with ``data: [DONE]``. Usage arrives in a trailing record
    when ``stream_options.include_usage`` is set.
    """

    def __init__(self):
        super().__init__()
        self._seen_text = ""

    def parse_record(self, data: str) -> list[NativeEvent]:
        if data.strip() == "[DONE]":
            return [self.finish()]

        record = self.load_json(data)
        if not isinstance(record, dict):
            return []

        if record.get("error"):
            error = record["error"]
            if isinstance(error, dict):
                code = error.get("type") or error.get("code")
                message = error.get("message") or str(error)
            else:
                code, message = None, str(error)
            return [ProviderError(kind_for_error_type(code), message)]

        events: list[NativeEvent] = []
        choices = record.get("choices") or []
        if choices:
            choice = choices[0]
            text = self._text_from_choice(choice)
            if text:
                self._seen_text += text
                events.append(TextDelta(text))
            if choice.get("finish_reason"):
                self.finish_reason = normalize_finish_reason(choice["finish_reason"])

        usage = record.get("usage")
        if isinstance(usage, dict):
            events.append(
                UsageReport(
                    prompt_tokens=usage.get("prompt_tokens"),
                    completion_tokens=usage.get("completion_tokens"),
                )
            )
        return events

    def _text_from_choice(self, choice: dict) -> str:
        delta = choice.get("delta") or {}
        if delta.get("content"):
            return delta["content"]
        # Perplexity sometimes leaves the delta empty and sends the full
        # message so far; only the unseen suffix is new.
        message = choice.get("message") or {}
        full = message.get("content") or ""
        if full.startswith(self._seen_text):
            return full[len(self._seen_text):]
        return ""

    def at_eof(self) -> list[NativeEvent]:
        if self.finish_reason:
            return [self.finish()]
        return []
