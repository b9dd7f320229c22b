from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .agent import ChatAgent, get_agent
from .auth import get_identity, require_user
from .config import Settings, get_settings
from .relay import SSE_HEADERS, OutputChannel, StreamRelay
from .schemas import (
    Chat,
    ChatRequestBody,
    ChatSearchResult,
    CreateChatRequest,
    HealthResponse,
    Message,
    StoreMessageRequest,
    StoreMessageResponse,
    UpdateTitleRequest,
)
from .store import ChatNotFoundError, ChatStore, PersistenceError, create_store

router = APIRouter()

logger = logging.getLogger(__name__)

# Running relays; held here so their tasks are not garbage collected mid-stream
_relay_tasks: set[asyncio.Task] = set()


@lru_cache
def get_store() -> ChatStore:
    return create_store(get_settings())


class BadRequestError(Exception):
    def __init__(self, message: str, details: object = None) -> None:
        super().__init__(message)
        self.details = details


def _error_response(status_code: int, error: str, details: object = None) -> JSONResponse:
    content: dict[str, object] = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def _read_chat_request(request: Request) -> ChatRequestBody:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type != "application/json":
        raise BadRequestError("Content-Type must be application/json")

    try:
        payload = await request.json()
    except ValueError as exc:
        raise BadRequestError("Invalid JSON payload.") from exc

    if not isinstance(payload, dict):
        raise BadRequestError("Request body must be a JSON object.")

    try:
        body = ChatRequestBody.model_validate(payload)
    except ValidationError as exc:
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"]}
            for err in exc.errors(include_url=False, include_input=False)
        ]
        raise BadRequestError("Invalid request body.", details) from exc

    if not body.new_message.strip():
        raise BadRequestError("newMessage must not be empty.")
    return body


def _start_relay(relay: StreamRelay, body: ChatRequestBody) -> None:
    task = asyncio.create_task(relay.run(body), name=f"relay:{body.chat_id}")
    _relay_tasks.add(task)
    task.add_done_callback(_relay_tasks.discard)


async def drain_relays(timeout: float = 10.0) -> None:
    """Give running streams ``timeout`` seconds to finish, then cancel the rest."""
    if not _relay_tasks:
        return
    logger.info("Waiting for %d running stream(s) to finish", len(_relay_tasks))
    _, pending = await asyncio.wait(set(_relay_tasks), timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning("Cancelled %d stream(s) at shutdown", len(pending))


@router.get("/healthz", response_model=HealthResponse)
def healthcheck() -> HealthResponse:
    return HealthResponse()


@router.post("/chat/stream")
async def chat_stream(
    request: Request,
    user_id: Optional[str] = Depends(get_identity),
    store: ChatStore = Depends(get_store),
    agent: ChatAgent = Depends(get_agent),
    settings: Settings = Depends(get_settings),
):
    """Stream one chat turn as Server-Sent Events.

    Authentication, body validation and the ownership check happen before the
    stream opens and fail with a JSON error response. Once the stream is open
    every failure is reported in-band as an ``error`` envelope.
    """
    if not user_id:
        return _error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    try:
        body = await _read_chat_request(request)
    except BadRequestError as exc:
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), exc.details)

    try:
        chat = await store.get_chat(body.chat_id, user_id)
        if chat is None:
            return _error_response(status.HTTP_404_NOT_FOUND, "Chat not found")

        channel = OutputChannel(high_water_mark=settings.stream_high_water_mark)
        relay = StreamRelay(store=store, agent=agent, channel=channel)
    except Exception as exc:
        logger.exception("Failed to start stream for chat %s", body.chat_id)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(exc))

    # The relay starts when the server begins sending the body
    return StreamingResponse(
        channel.reader(on_open=lambda: _start_relay(relay, body)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def _persistence_failed(exc: PersistenceError) -> HTTPException:
    logger.error("Store operation failed: %s", exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


async def _owned_chat(chat_id: str, user_id: str, store: ChatStore) -> Chat:
    try:
        chat = await store.get_chat(chat_id, user_id)
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc
    if chat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return chat


@router.post("/chats", response_model=Chat, status_code=status.HTTP_201_CREATED)
async def create_chat(
    payload: CreateChatRequest,
    user_id: str = Depends(require_user),
    store: ChatStore = Depends(get_store),
):
    try:
        return await store.create_chat(user_id, payload.title)
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc


@router.get("/chats", response_model=list[Chat])
async def list_chats(user_id: str = Depends(require_user), store: ChatStore = Depends(get_store)):
    try:
        return await store.list_chats(user_id)
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc


@router.get("/chats/search", response_model=list[ChatSearchResult])
async def search_chats(
    q: str = Query(default=""),
    user_id: str = Depends(require_user),
    store: ChatStore = Depends(get_store),
):
    try:
        return await store.search_chats(user_id, q)
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc


@router.get("/chats/{chat_id}", response_model=Chat)
async def get_chat(chat_id: str, user_id: str = Depends(require_user), store: ChatStore = Depends(get_store)):
    return await _owned_chat(chat_id, user_id, store)


@router.delete("/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(chat_id: str, user_id: str = Depends(require_user), store: ChatStore = Depends(get_store)):
    try:
        await store.delete_chat(chat_id, user_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/chats/{chat_id}/title", response_model=Chat)
async def update_chat_title(
    chat_id: str,
    payload: UpdateTitleRequest,
    user_id: str = Depends(require_user),
    store: ChatStore = Depends(get_store),
):
    try:
        return await store.update_chat_title(chat_id, user_id, payload.first_message)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc


@router.get("/chats/{chat_id}/messages", response_model=list[Message])
async def list_messages(chat_id: str, user_id: str = Depends(require_user), store: ChatStore = Depends(get_store)):
    await _owned_chat(chat_id, user_id, store)
    try:
        return await store.list_messages(chat_id)
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc


@router.post(
    "/chats/{chat_id}/messages",
    response_model=StoreMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def store_message(
    chat_id: str,
    payload: StoreMessageRequest,
    user_id: str = Depends(require_user),
    store: ChatStore = Depends(get_store),
):
    await _owned_chat(chat_id, user_id, store)
    try:
        message_id = await store.store_message(chat_id, payload.content, payload.role)
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc
    return StoreMessageResponse(message_id=message_id)


@router.get("/chats/{chat_id}/messages/last", response_model=Optional[Message])
async def get_last_message(chat_id: str, user_id: str = Depends(require_user), store: ChatStore = Depends(get_store)):
    try:
        return await store.get_last_message(chat_id, user_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found") from exc
    except PersistenceError as exc:
        raise _persistence_failed(exc) from exc
