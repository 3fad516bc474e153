from gateway.services.parsers.base import (
    LineParser,
    NativeEvent,
    ProviderError,
    TextDelta,
    UsageReport,
    kind_for_error_type,
    normalize_finish_reason,
)


class OllamaStreamParser(LineParser):
    """Newline-delimited JSON from Ollama-compatible ``/api/chat``.

    The last record has ``"done": true`` plus ``done_reason`` and the
    ``prompt_eval_count`` / ``eval_count`` token totals.
    """

    def parse_line(self, line: str) -> list[NativeEvent]:
        record = self.load_json(line)
        if not isinstance(record, dict):
            return []

        if record.get("error"):
            error = record["error"]
            return [ProviderError(kind_for_error_type(str(error)), str(error))]

        events: list[NativeEvent] = []
        text = (record.get("message") or {}).get("content")
        if text:
            events.append(TextDelta(text))

        if record.get("done"):
            if "prompt_eval_count" in record or "eval_count" in record:
                events.append(
                    UsageReport(
                        prompt_tokens=record.get("prompt_eval_count"),
                        completion_tokens=record.get("eval_count"),
                    )
                )
            events.append(self.finish(normalize_finish_reason(record.get("done_reason") or "stop")))
        return events
