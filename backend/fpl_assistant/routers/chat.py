import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from fpl_assistant.ai import create_tool_context, create_tool_registry
from fpl_assistant.ai.emitter import EventEmitter
from fpl_assistant.ai.events import ErrorEvent
from fpl_assistant.ai.orchestrator import ChatOrchestrator
from fpl_assistant.ai.tool_registry import ToolRegistry
from fpl_assistant.config import get_settings
from fpl_assistant.schemas.chat import ChatRequest, ErrorResponse
from fpl_assistant.services.fpl_client import FPLClient

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

router = APIRouter(prefix="/chat", tags=["chat"])


def get_tool_registry() -> ToolRegistry:
    return create_tool_registry()


def _error_response(status_code: int, error: str, code: str, details: list | None = None) -> JSONResponse:
    payload = ErrorResponse(error=error, code=code, details=details)
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(exclude_none=True),
    )


@router.post(
    "",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def chat(request: Request, registry: ToolRegistry = Depends(get_tool_registry)):
    """Stream an assistant reply, running tools as the model requests them."""
    try:
        body = ChatRequest.model_validate(await request.json())
    except ValidationError as exc:
        return _error_response(
            400, "Invalid request", "INVALID_REQUEST",
            details=exc.errors(include_url=False, include_context=False),
        )
    except ValueError:
        return _error_response(400, "Invalid request", "INVALID_REQUEST")

    api_key = body.api_key or get_settings().anthropic_api_key
    if not api_key:
        return _error_response(
            401,
            "No API key configured. Please add your Anthropic API key using the 'API Key' button.",
            "API_KEY_MISSING",
        )

    logger.info(
        "Chat request: %d message(s), manager=%s, thinking=%s",
        len(body.messages), body.manager_id, body.show_thinking,
    )
    emitter = EventEmitter()

    async def event_stream():
        producer = asyncio.create_task(_run_chat(body, api_key, registry, emitter))
        try:
            async for frame in emitter.frames():
                yield frame
            await producer
        finally:
            if not producer.done():
                logger.info("Client went away, cancelling chat run")
                producer.cancel()
            emitter.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _run_chat(
    body: ChatRequest,
    api_key: str,
    registry: ToolRegistry,
    emitter: EventEmitter,
) -> None:
    try:
        async with FPLClient() as fpl:
            tool_context = await create_tool_context(fpl, body.manager_id)
            orchestrator = ChatOrchestrator(registry, api_key=api_key)
            await orchestrator.run_conversation(
                body.to_api_messages(),
                tool_context,
                emitter,
                show_thinking=body.show_thinking,
            )
    except Exception as exc:
        logger.exception("Chat run failed before the conversation finished")
        if not (emitter.terminated or emitter.closed):
            await emitter.emit(ErrorEvent(str(exc) or "Unknown error"))
    finally:
        emitter.close()
