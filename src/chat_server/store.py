"""Chat and message persistence.

Chats live at ``chats/{chatId}`` and their messages at
``chats/{chatId}/messages/{messageId}``. Messages are written once and only
removed together with their chat.
"""

from __future__ import annotations

import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Iterable

from google.api_core.exceptions import GoogleAPIError
from google.cloud.firestore_v1 import Query
from google.cloud.firestore_v1.base_query import FieldFilter

from .config import Settings
from .firebase import get_async_firestore_client
from .schemas import Chat, ChatSearchResult, Message, MessageRole

logger = logging.getLogger(__name__)

DEFAULT_CHAT_TITLE = "New Chat"

_TITLE_MAX_LENGTH = 40
_QUESTION_WORDS = ("what", "how", "why", "when", "where", "who", "which")
_COMMAND_PREFIXES = ("tell me", "explain", "help", "search", "find", "show")


class PersistenceError(Exception):
    """A store read or write failed."""


class ChatNotFoundError(Exception):
    """The chat does not exist or belongs to another user."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Chat not found: {chat_id}")
        self.chat_id = chat_id


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_chat_title(message: str) -> str:
    """Derive a short sidebar title from the first message of a chat."""
    clean = " ".join(message.split())
    if len(clean) <= _TITLE_MAX_LENGTH:
        return clean

    lower = clean.lower()

    if "?" in lower:
        question = clean.split("?")[0]
        if len(question) <= _TITLE_MAX_LENGTH:
            return question + "?"

    first_words = " ".join(clean.split(" ")[:8])
    if lower.startswith(_QUESTION_WORDS) and len(first_words) <= _TITLE_MAX_LENGTH:
        return first_words + "..."

    if lower.startswith(_COMMAND_PREFIXES):
        command = " ".join(clean.split(" ")[:6])
        if len(command) <= _TITLE_MAX_LENGTH:
            return command + "..."

    return clean[:37] + "..."


def score_chat(chat: Chat, messages: Iterable[Message], term: str) -> float | None:
    """Relevance of a chat for a lower-cased search term, or None if it does not match."""
    matched = False
    score = 0.0
    if chat.title and term in chat.title.lower():
        matched = True
        score += 10
    words = term.split(" ")
    for message in messages:
        content = message.content.lower()
        if term in content:
            matched = True
            score += 1
            score += 0.5 * sum(1 for word in words if word in content)
    return score if matched else None


def rank_search_results(results: list[ChatSearchResult]) -> list[ChatSearchResult]:
    return sorted(results, key=lambda r: (r.relevance_score, r.created_at), reverse=True)


class ChatStore(ABC):
    """Document store for chats and their messages."""

    @abstractmethod
    async def create_chat(self, user_id: str, title: str = DEFAULT_CHAT_TITLE) -> Chat:
        ...

    @abstractmethod
    async def get_chat(self, chat_id: str, user_id: str) -> Chat | None:
        """Return the chat when it exists and is owned by ``user_id``."""

    @abstractmethod
    async def list_chats(self, user_id: str) -> list[Chat]:
        """Chats owned by ``user_id``, newest first."""

    @abstractmethod
    async def delete_chat(self, chat_id: str, user_id: str) -> None:
        """Delete a chat and all of its messages."""

    @abstractmethod
    async def list_messages(self, chat_id: str) -> list[Message]:
        """Messages of a chat, oldest first."""

    @abstractmethod
    async def store_message(self, chat_id: str, content: str, role: MessageRole) -> str:
        """Insert a message and return its id."""

    @abstractmethod
    async def _rename_chat(self, chat_id: str, title: str) -> None:
        ...

    async def send_message(self, chat_id: str, content: str) -> str:
        """Insert a user message and return its id."""
        message_id = await self.store_message(chat_id, content, "user")
        logger.info("Saved user message %s in chat %s", message_id, chat_id)
        return message_id

    async def get_last_message(self, chat_id: str, user_id: str) -> Message | None:
        if await self.get_chat(chat_id, user_id) is None:
            raise ChatNotFoundError(chat_id)
        messages = await self.list_messages(chat_id)
        return messages[-1] if messages else None

    async def update_chat_title(self, chat_id: str, user_id: str, first_message: str) -> Chat:
        """Replace the default title with one derived from the first message."""
        chat = await self.get_chat(chat_id, user_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        if chat.title != DEFAULT_CHAT_TITLE:
            return chat
        title = generate_chat_title(first_message)
        await self._rename_chat(chat_id, title)
        return chat.model_copy(update={"title": title})

    async def search_chats(self, user_id: str, query: str) -> list[ChatSearchResult]:
        chats = await self.list_chats(user_id)
        term = query.lower().strip()
        if not term:
            return [ChatSearchResult(**chat.model_dump()) for chat in chats]

        results: list[ChatSearchResult] = []
        for chat in chats:
            score = score_chat(chat, await self.list_messages(chat.id), term)
            if score is not None:
                results.append(ChatSearchResult(**chat.model_dump(), relevance_score=score))
        return rank_search_results(results)


class InMemoryChatStore(ChatStore):
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._chats: dict[str, Chat] = {}
        self._messages: dict[str, list[Message]] = {}

    async def create_chat(self, user_id: str, title: str = DEFAULT_CHAT_TITLE) -> Chat:
        chat = Chat(id=uuid.uuid4().hex, title=title, user_id=user_id, created_at=_now_ms())
        self._chats[chat.id] = chat
        self._messages[chat.id] = []
        return chat

    async def get_chat(self, chat_id: str, user_id: str) -> Chat | None:
        chat = self._chats.get(chat_id)
        if chat is None or chat.user_id != user_id:
            return None
        return chat

    async def list_chats(self, user_id: str) -> list[Chat]:
        chats = [chat for chat in self._chats.values() if chat.user_id == user_id]
        return sorted(chats, key=lambda c: c.created_at, reverse=True)

    async def delete_chat(self, chat_id: str, user_id: str) -> None:
        if await self.get_chat(chat_id, user_id) is None:
            raise ChatNotFoundError(chat_id)
        self._messages.pop(chat_id, None)
        del self._chats[chat_id]

    async def list_messages(self, chat_id: str) -> list[Message]:
        return list(self._messages.get(chat_id, []))

    async def store_message(self, chat_id: str, content: str, role: MessageRole) -> str:
        if chat_id not in self._chats:
            raise PersistenceError(f"Cannot store message in unknown chat {chat_id}")
        message = Message(
            id=uuid.uuid4().hex,
            chat_id=chat_id,
            role=role,
            content=content,
            created_at=_now_ms(),
        )
        self._messages[chat_id].append(message)
        return message.id

    async def _rename_chat(self, chat_id: str, title: str) -> None:
        self._chats[chat_id] = self._chats[chat_id].model_copy(update={"title": title})


class FirestoreChatStore(ChatStore):
    """Store backed by Cloud Firestore through the Firebase Admin SDK."""

    def __init__(self, settings: Settings) -> None:
        self._db = get_async_firestore_client(settings)

    def _chat_ref(self, chat_id: str):
        return self._db.collection("chats").document(chat_id)

    @staticmethod
    def _to_chat(doc_id: str, data: dict) -> Chat:
        return Chat(
            id=doc_id,
            title=data.get("title", DEFAULT_CHAT_TITLE),
            user_id=data.get("userId", ""),
            created_at=data.get("createdAt", 0),
        )

    @staticmethod
    def _to_message(doc_id: str, data: dict) -> Message:
        return Message(
            id=doc_id,
            chat_id=data.get("chatId", ""),
            role=data.get("role", "user"),
            content=data.get("content", ""),
            created_at=data.get("createdAt", 0),
        )

    async def create_chat(self, user_id: str, title: str = DEFAULT_CHAT_TITLE) -> Chat:
        ref = self._db.collection("chats").document()
        data = {"title": title, "userId": user_id, "createdAt": _now_ms()}
        try:
            await ref.set(data)
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to create chat: {exc}") from exc
        return self._to_chat(ref.id, data)

    async def get_chat(self, chat_id: str, user_id: str) -> Chat | None:
        try:
            snapshot = await self._chat_ref(chat_id).get()
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to fetch chat {chat_id}: {exc}") from exc
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        if data.get("userId") != user_id:
            logger.info("Chat %s requested by non-owner %s", chat_id, user_id)
            return None
        return self._to_chat(snapshot.id, data)

    async def list_chats(self, user_id: str) -> list[Chat]:
        query = (
            self._db.collection("chats")
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=Query.DESCENDING)
        )
        try:
            return [self._to_chat(doc.id, doc.to_dict() or {}) async for doc in query.stream()]
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to list chats: {exc}") from exc

    async def delete_chat(self, chat_id: str, user_id: str) -> None:
        if await self.get_chat(chat_id, user_id) is None:
            raise ChatNotFoundError(chat_id)
        ref = self._chat_ref(chat_id)
        try:
            batch = self._db.batch()
            async for doc in ref.collection("messages").stream():
                batch.delete(doc.reference)
            batch.delete(ref)
            await batch.commit()
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to delete chat {chat_id}: {exc}") from exc
        logger.info("Deleted chat %s", chat_id)

    async def list_messages(self, chat_id: str) -> list[Message]:
        query = self._chat_ref(chat_id).collection("messages").order_by("createdAt")
        try:
            return [self._to_message(doc.id, doc.to_dict() or {}) async for doc in query.stream()]
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to list messages of chat {chat_id}: {exc}") from exc

    async def get_last_message(self, chat_id: str, user_id: str) -> Message | None:
        if await self.get_chat(chat_id, user_id) is None:
            raise ChatNotFoundError(chat_id)
        query = (
            self._chat_ref(chat_id)
            .collection("messages")
            .order_by("createdAt", direction=Query.DESCENDING)
            .limit(1)
        )
        try:
            async for doc in query.stream():
                return self._to_message(doc.id, doc.to_dict() or {})
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to fetch last message of chat {chat_id}: {exc}") from exc
        return None

    async def store_message(self, chat_id: str, content: str, role: MessageRole) -> str:
        ref = self._chat_ref(chat_id).collection("messages").document()
        try:
            await ref.set(
                {
                    "chatId": chat_id,
                    "content": content,
                    "role": role,
                    "createdAt": _now_ms(),
                }
            )
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to store {role} message in chat {chat_id}: {exc}") from exc
        logger.debug("Stored %s message %s (%d chars)", role, ref.id, len(content))
        return ref.id

    async def _rename_chat(self, chat_id: str, title: str) -> None:
        try:
            await self._chat_ref(chat_id).update({"title": title})
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to rename chat {chat_id}: {exc}") from exc


def create_store(settings: Settings) -> ChatStore:
    """Build a store based on configuration."""

    if settings.store_backend == "memory":
        return InMemoryChatStore()
    return FirestoreChatStore(settings)


__all__ = [
    "ChatNotFoundError",
    "ChatStore",
    "DEFAULT_CHAT_TITLE",
    "FirestoreChatStore",
    "InMemoryChatStore",
    "PersistenceError",
    "create_store",
    "generate_chat_title",
]
