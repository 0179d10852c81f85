"""API endpoints for the chat service."""

import asyncio
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from chatstream import __version__
from chatstream.config import Settings, get_settings
from chatstream.errors import ChatNotFoundError, ChatStreamError, ModelCallError, StorageError
from chatstream.models.conversation import (
    ChatResponse,
    ChatSummary,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    NewChatResponse,
    TurnInput,
    TurnRequest,
    TurnResponse,
)
from chatstream.models.views import ViewNode
from chatstream.services.chat_store import ChatStore, get_chat_store, validate_chat_id
from chatstream.services.llm import ModelRouter, get_model_router
from chatstream.services.orchestrator import TurnOrchestrator, TurnResult, get_orchestrator
from chatstream.services.projection import project
from chatstream.services.streams import ChannelDone, ChannelError, ChannelUpdate, StreamChannel
from chatstream.utils.ids import new_id
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Turns started by the streaming endpoint outlive the request
_background_turns: set[asyncio.Task[TurnResult]] = set()

UserId = Annotated[str, Header(alias="X-User-Id")]


def get_user_id(x_user_id: UserId = "anonymous") -> str:
    return x_user_id


def _turn_input(chat_id: str, request: TurnRequest, settings: Settings) -> TurnInput:
    try:
        validate_chat_id(chat_id)
        return request.to_turn_input(settings.default_model)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _http_error(e: Exception, chat_id: str) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(e, ChatNotFoundError):
        return HTTPException(status_code=404, detail="Chat not found")
    if isinstance(e, ModelCallError):
        return HTTPException(status_code=502, detail="The language model failed to respond. Please try again.")
    if isinstance(e, StorageError):
        return HTTPException(status_code=503, detail="The chat could not be saved. Please try again.")
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unexpected error on chat {chat_id}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/chats", response_model=NewChatResponse, tags=["Chats"])
async def create_chat() -> NewChatResponse:
    """Allocate an identifier for a new chat. The chat is stored on its first turn."""
    return NewChatResponse(chat_id=new_id())


@router.get("/chats", response_model=list[ChatSummary], tags=["Chats"])
async def list_chats(
    user_id: Annotated[str, Depends(get_user_id)],
    store: Annotated[ChatStore, Depends(get_chat_store)],
) -> list[ChatSummary]:
    """List the caller's chats, newest first."""
    try:
        chats = await store.list_chats(user_id)
    except StorageError as e:
        raise _http_error(e, "*") from e
    return [ChatSummary(id=c.id, title=c.title, created_at=c.created_at, path=c.path) for c in chats]


@router.get("/chats/{chat_id}", response_model=ChatResponse, tags=["Chats"])
async def get_chat(
    chat_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    store: Annotated[ChatStore, Depends(get_chat_store)],
) -> ChatResponse:
    """Replay a stored chat into views."""
    try:
        validate_chat_id(chat_id)
        chat = await store.get_chat(chat_id)
    except (ValueError, StorageError) as e:
        raise _http_error(e, chat_id) from e

    if chat is None or chat.user_id != user_id:
        raise HTTPException(status_code=404, detail="Chat not found")

    return ChatResponse(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at,
        path=chat.path,
        views=project(chat.id, chat.messages),
    )


@router.delete("/chats/{chat_id}", status_code=204, tags=["Chats"])
async def delete_chat(
    chat_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    store: Annotated[ChatStore, Depends(get_chat_store)],
) -> None:
    """Delete one of the caller's chats."""
    try:
        validate_chat_id(chat_id)
        chat = await store.get_chat(chat_id)
        if chat is None or chat.user_id != user_id:
            raise ChatNotFoundError(chat_id)
        await store.delete_chat(chat_id)
    except (ValueError, ChatStreamError) as e:
        raise _http_error(e, chat_id) from e
    logger.info(f"Deleted chat {chat_id} for user {user_id}")


@router.post("/chats/{chat_id}/turns", response_model=TurnResponse, tags=["Chats"])
async def submit_turn(
    chat_id: str,
    request: TurnRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[TurnOrchestrator, Depends(get_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TurnResponse:
    """Run one turn and return its final view."""
    turn_input = _turn_input(chat_id, request, settings)
    logger.info(f"Turn request on chat {chat_id}: {turn_input.text[:50]}...")

    try:
        result = await orchestrator.submit_turn(chat_id, user_id, turn_input)
    except (ValueError, ChatStreamError) as e:
        raise _http_error(e, chat_id) from e

    return TurnResponse(turn_id=result.turn_id, chat_id=result.chat_id, view=result.view)


def _event_line(event: str, **fields: Any) -> str:
    return json.dumps({"event": event, **fields}) + "\n"


def _view_json(view: ViewNode | None) -> dict[str, Any] | None:
    return view.model_dump(mode="json") if view is not None else None


def _public_error(cause: BaseException) -> str:
    if isinstance(cause, ModelCallError):
        return "The language model failed to respond. Please try again."
    if isinstance(cause, StorageError):
        return "The chat could not be saved. Please try again."
    if isinstance(cause, ChatStreamError | ValueError):
        return str(cause)
    return "Internal server error"


def _log_turn_outcome(task: asyncio.Task[TurnResult]) -> None:
    _background_turns.discard(task)
    if task.cancelled():
        logger.warning("Background turn was cancelled")
    elif task.exception() is not None:
        logger.warning(f"Background turn failed: {task.exception()}")


@router.post("/chats/{chat_id}/turns/stream", tags=["Chats"])
async def stream_turn(
    chat_id: str,
    request: TurnRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[TurnOrchestrator, Depends(get_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse:
    """Run one turn, streaming its views as newline-delimited JSON.

    Each line is ``{"event": "update" | "done" | "error", ...}``. The turn
    keeps running if the client disconnects.
    """
    turn_input = _turn_input(chat_id, request, settings)

    try:
        existing = await orchestrator.store.get_chat(chat_id)
    except StorageError as e:
        raise _http_error(e, chat_id) from e
    if existing is not None and existing.user_id != user_id:
        raise HTTPException(status_code=404, detail="Chat not found")

    display: StreamChannel[ViewNode | None] = StreamChannel(None, append=False, name=f"display:{chat_id}")
    subscription = display.subscribe()

    task = asyncio.create_task(orchestrator.submit_turn(chat_id, user_id, turn_input, display))
    _background_turns.add(task)
    task.add_done_callback(_log_turn_outcome)

    async def events() -> AsyncIterator[str]:
        async for event in subscription:
            if isinstance(event, ChannelUpdate):
                yield _event_line("update", view=_view_json(event.value))
            elif isinstance(event, ChannelDone):
                yield _event_line("done", chat_id=chat_id, view=_view_json(event.value))
            elif isinstance(event, ChannelError):
                yield _event_line("error", message=_public_error(event.cause))

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.post("/generate", response_model=GenerateResponse, tags=["Generate"])
async def generate(
    request: GenerateRequest,
    model_router: Annotated[ModelRouter, Depends(get_model_router)],
) -> GenerateResponse:
    """Answer a single prompt without a chat or tools."""
    if not request.prompt.strip() or not request.model:
        raise HTTPException(status_code=400, detail="Both prompt and model are required")

    try:
        client, model = model_router.resolve(request.model)
        text = await client.complete(model, request.prompt, "")
    except (ValueError, ChatStreamError) as e:
        raise _http_error(e, "-") from e

    return GenerateResponse(res=text)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
