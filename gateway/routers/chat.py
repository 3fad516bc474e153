import json
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from gateway.dependencies import get_cost_tracker, get_dispatcher
from gateway.models.schemas import ChatCompletionResponse, ChatRequest, ErrorResponse
from gateway.services.conversation import CompletionSettings, Message
from gateway.services.cost_tracker import CostTracker
from gateway.services.dispatcher import Dispatcher
from gateway.services.events import ContentDelta, Done, ErrorKind, UsageSummary

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/completions")
async def chat_completions(
    request: ChatRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
    cost_tracker: CostTracker = Depends(get_cost_tracker),
):
    """Stream a completion via SSE, or return it whole when ``stream`` is off."""
    conversation = [Message(m.role, m.content) for m in request.messages]
    settings = CompletionSettings(**request.settings.model_dump())

    if not settings.stream:
        return await _complete(request, conversation, settings, dispatcher, cost_tracker)

    async def event_generator():
        handle = dispatcher.stream(conversation, settings)
        parts = []
        try:
            async for event in handle:
                payload = event.to_dict()
                if isinstance(event, ContentDelta):
                    parts.append(event.text)
                elif isinstance(event, Done):
                    payload["message_id"] = await _persist(
                        cost_tracker, settings, "".join(parts), event.usage,
                        event.finish_reason, request.conversation_id,
                    )
                    payload["conversation_id"] = request.conversation_id
                yield {"event": event.type, "data": json.dumps(payload)}
        finally:
            # Client disconnects land here too; closing the handle drops the upstream
            await handle.aclose()

    return EventSourceResponse(event_generator())


async def _complete(
    request: ChatRequest,
    conversation: list[Message],
    settings: CompletionSettings,
    dispatcher: Dispatcher,
    cost_tracker: CostTracker,
):
    result = await dispatcher.complete(conversation, settings)
    if not result.ok:
        error = result.error
        status = 400 if error.kind is ErrorKind.CONFIGURATION else 502
        body = ErrorResponse(
            kind=error.kind.value,
            message=error.message,
            retryable=error.retryable,
            partial_text=error.partial_text,
        )
        return JSONResponse(status_code=status, content=body.model_dump())

    message_id = await _persist(
        cost_tracker, settings, result.text, result.usage,
        result.finish_reason, request.conversation_id,
    )
    return ChatCompletionResponse(
        message_id=message_id,
        conversation_id=request.conversation_id,
        provider=settings.provider,
        model=settings.model,
        content=result.text,
        finish_reason=result.finish_reason,
        usage=asdict(result.usage),
    )


async def _persist(
    cost_tracker: CostTracker,
    settings: CompletionSettings,
    content: str,
    usage: UsageSummary,
    finish_reason: Optional[str],
    conversation_id: Optional[str],
) -> Optional[str]:
    """Store the finished message. A storage failure never breaks the reply."""
    try:
        return await cost_tracker.record_completion(
            provider=settings.provider,
            model_id=settings.model,
            content=content,
            usage=usage,
            finish_reason=finish_reason,
            conversation_id=conversation_id,
        )
    except Exception:
        logger.exception("Failed to record completion for %s/%s", settings.provider, settings.model)
        return None
