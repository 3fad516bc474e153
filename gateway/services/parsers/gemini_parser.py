from gateway.services.parsers.base import (
    NativeEvent,
    ProviderError,
    SSEParser,
    TextDelta,
    UsageReport,
    kind_for_error_type,
    normalize_finish_reason,
)


class GeminiStreamParser(SSEParser):
    """``streamGenerateContent?alt=sse`` stream.

    Each record is a partial GenerateContentResponse. There is no sentinel:
    the response simply ends, so completion is reported from ``at_eof`` once
    a candidate has carried a ``finishReason``.
    """

    def parse_record(self, data: str) -> list[NativeEvent]:
        record = self.load_json(data)
        if not isinstance(record, dict):
            return []

        if record.get("error"):
            error = record["error"]
            return [
                ProviderError(
                    kind_for_error_type(error.get("status")),
                    error.get("message") or "Gemini stream error",
                )
            ]

        events: list[NativeEvent] = []
        candidates = record.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
            if text:
                events.append(TextDelta(text))
            if candidate.get("finishReason"):
                self.finish_reason = normalize_finish_reason(candidate["finishReason"])

        usage = record.get("usageMetadata")
        if isinstance(usage, dict):
            events.append(
                UsageReport(
                    prompt_tokens=usage.get("promptTokenCount"),
                    completion_tokens=usage.get("candidatesTokenCount"),
                )
            )
        return events

    def at_eof(self) -> list[NativeEvent]:
        if self.finish_reason:
            return [self.finish()]
        return []
