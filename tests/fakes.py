"""Scripted stand-ins for upstream providers and SSE bodies."""
import asyncio
import json
from contextlib import asynccontextmanager

from gateway.services.parsers.openai_parser import OpenAIStreamParser
from gateway.services.providers.base import BaseLLMProvider

HANG = object()


def sse(*records) -> bytes:
    """Encode records as ``data:`` lines. Strings are sent verbatim."""
    out = []
    for record in records:
        data = record if isinstance(record, str) else json.dumps(record, ensure_ascii=False)
        out.append(f"data: {data}\n\n")
    return "".join(out).encode("utf-8")


def openai_chunk(text=None, finish_reason=None, usage=None) -> dict:
    chunk = {"id": "chatcmpl-1", "object": "chat.completion.chunk", "choices": []}
    if text is not None or finish_reason is not None:
        delta = {"content": text} if text is not None else {}
        chunk["choices"].append({"index": 0, "delta": delta, "finish_reason": finish_reason})
    if usage is not None:
        chunk["usage"] = usage
    return chunk


def openai_body(*texts, finish_reason="stop", usage=None, done=True) -> bytes:
    records = [openai_chunk(t) for t in texts]
    records.append(openai_chunk(finish_reason=finish_reason))
    if usage is not None:
        records.append(openai_chunk(usage=usage))
    if done:
        records.append("[DONE]")
    return sse(*records)


class FakeProvider(BaseLLMProvider):
    """Plays back one script per ``open_stream`` call.

    A script is either an exception (raised while connecting) or a list of
    items: ``bytes`` are delivered as chunks, exceptions are raised mid-body,
    and ``HANG`` blocks until the reader gives up.
    """

    def __init__(self, scripts, name="openai", parser_cls=OpenAIStreamParser):
        self.scripts = list(scripts)
        self.name = name
        self.parser_cls = parser_cls
        self.requests = []
        self.closed = 0

    def get_provider_name(self) -> str:
        return self.name

    def create_parser(self):
        return self.parser_cls()

    @asynccontextmanager
    async def open_stream(self, request):
        self.requests.append(request)
        script = self.scripts.pop(0)
        if isinstance(script, BaseException):
            raise script
        try:
            yield self._body(script)
        finally:
            self.closed += 1

    async def _body(self, script):
        for item in script:
            if item is HANG:
                await asyncio.Event().wait()
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
