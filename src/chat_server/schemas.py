from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant"]


class MessageEnvelope(BaseModel):
    """Role/content pair as sent by the client in the conversation history."""

    role: MessageRole
    content: str


class ChatRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[MessageEnvelope]
    new_message: str = Field(..., alias="newMessage", min_length=1)
    chat_id: str = Field(..., alias="chatId", min_length=1)


class Chat(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    user_id: str = Field(..., alias="userId")
    created_at: int = Field(..., alias="createdAt", description="Epoch milliseconds")


class ChatSearchResult(Chat):
    relevance_score: float = Field(default=0.0, alias="relevanceScore")


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    chat_id: str = Field(..., alias="chatId")
    role: MessageRole
    content: str
    created_at: int = Field(..., alias="createdAt", description="Epoch milliseconds")


class CreateChatRequest(BaseModel):
    title: str = "New Chat"


class UpdateTitleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_message: str = Field(..., alias="firstMessage")


class StoreMessageRequest(BaseModel):
    content: str
    role: MessageRole = "assistant"


class StoreMessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(..., alias="messageId")


class HealthResponse(BaseModel):
    status: str = "ok"
