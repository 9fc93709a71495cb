"""In-memory chat persistence.

Stands in for the relational store behind the chat endpoints. Rows are plain
dataclasses scoped to the owning user id.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from .types import Attachment

NEW_CHAT_TITLE = "New Chat"
TITLE_LENGTH = 50


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def title_from(message: str | None) -> str:
    return (message or "")[:TITLE_LENGTH] or NEW_CHAT_TITLE


@dataclass
class AttachmentRow:
    id: str
    message_id: str
    user_id: str
    filename: str
    url: str
    type: str
    size: int


@dataclass
class MessageRow:
    id: str
    chat_id: str
    role: str
    content: str
    created_at: datetime = field(default_factory=_now)
    model_used: str | None = None
    attachments: list[AttachmentRow] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["created_at"] = self.created_at.isoformat()
        return payload


@dataclass
class ChatRow:
    id: str
    user_id: str
    title: str
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    messages: list[MessageRow] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "message_count": len(self.messages),
        }

    def to_dict(self) -> dict[str, Any]:
        payload = self.summary()
        payload["messages"] = [message.to_dict() for message in self.messages]
        return payload

    def history(self) -> list[tuple[str, str]]:
        return [(message.role, message.content) for message in self.messages]


class ChatStore:
    def __init__(self) -> None:
        self._chats: dict[str, ChatRow] = {}

    def create_chat(self, user_id: str, message: str | None) -> ChatRow:
        chat = ChatRow(id=_new_id(), user_id=user_id, title=title_from(message))
        self._chats[chat.id] = chat
        return chat

    def get_chat(self, user_id: str, chat_id: str) -> ChatRow | None:
        chat = self._chats.get(chat_id)
        if chat is None or chat.user_id != user_id:
            return None
        return chat

    def list_chats(self, user_id: str) -> list[ChatRow]:
        chats = [chat for chat in self._chats.values() if chat.user_id == user_id]
        return sorted(chats, key=lambda chat: chat.updated_at, reverse=True)

    def delete_chat(self, user_id: str, chat_id: str) -> bool:
        chat = self.get_chat(user_id, chat_id)
        if chat is None:
            return False
        del self._chats[chat_id]
        return True

    def add_message(
        self,
        chat: ChatRow,
        role: str,
        content: str,
        *,
        attachments: Iterable[Attachment] = (),
        model_used: str | None = None,
    ) -> MessageRow:
        message = MessageRow(id=_new_id(), chat_id=chat.id, role=role, content=content, model_used=model_used)
        message.attachments = [
            AttachmentRow(
                id=_new_id(),
                message_id=message.id,
                user_id=chat.user_id,
                filename=attachment.filename,
                url=attachment.url,
                type=attachment.type,
                size=attachment.size,
            )
            for attachment in attachments
        ]
        chat.messages.append(message)
        return message

    def touch(self, chat: ChatRow, first_message: str | None = None) -> None:
        if chat.title == NEW_CHAT_TITLE and first_message:
            chat.title = title_from(first_message)
        chat.updated_at = _now()
