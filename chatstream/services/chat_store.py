"""Chat persistence: in-memory and JSON-file backends."""

import asyncio
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from chatstream.config import get_settings
from chatstream.errors import StorageError
from chatstream.models.conversation import ChatRecord
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

CHAT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_chat_id(chat_id: str) -> str:
    """Reject identifiers that could escape the storage namespace."""
    if not CHAT_ID_PATTERN.match(chat_id):
        raise ValueError(f"Invalid chat ID: {chat_id!r}")
    return chat_id


class ChatStore(ABC):
    """Storage for whole chat records. Each save replaces the previous record."""

    @abstractmethod
    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        """Load a chat, or None if it does not exist."""

    @abstractmethod
    async def save_chat(self, chat: ChatRecord) -> None:
        """Persist a chat record. Raises StorageError on failure."""

    @abstractmethod
    async def list_chats(self, user_id: str) -> list[ChatRecord]:
        """All chats of a user, newest first."""

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat. Returns False if it did not exist."""


class InMemoryChatStore(ChatStore):
    """In-memory chat store for development and tests."""

    def __init__(self):
        self.chats: dict[str, ChatRecord] = {}

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        return self.chats.get(chat_id)

    async def save_chat(self, chat: ChatRecord) -> None:
        self.chats[chat.id] = chat

    async def list_chats(self, user_id: str) -> list[ChatRecord]:
        chats = [chat for chat in self.chats.values() if chat.user_id == user_id]
        return sorted(chats, key=lambda chat: chat.created_at, reverse=True)

    async def delete_chat(self, chat_id: str) -> bool:
        if chat_id in self.chats:
            del self.chats[chat_id]
            return True
        return False


class JsonFileChatStore(ChatStore):
    """One JSON document per chat, replaced atomically on every save."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    def _path(self, chat_id: str) -> Path:
        return self.data_dir / f"{validate_chat_id(chat_id)}.json"

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        path = self._path(chat_id)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read chat {chat_id}: {e}") from e

        try:
            return ChatRecord.model_validate_json(raw)
        except ValidationError as e:
            raise StorageError(f"Chat {chat_id} is corrupt: {e}") from e

    async def save_chat(self, chat: ChatRecord) -> None:
        path = self._path(chat.id)
        payload = chat.model_dump_json()
        try:
            await asyncio.to_thread(self._write_atomic, path, payload)
        except OSError as e:
            logger.error(f"Failed to persist chat {chat.id}: {e}", exc_info=True)
            raise StorageError(f"Failed to persist chat {chat.id}: {e}") from e

    def _write_atomic(self, path: Path, payload: str) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)

    async def list_chats(self, user_id: str) -> list[ChatRecord]:
        if not self.data_dir.exists():
            return []

        chats = []
        for path in sorted(self.data_dir.glob("*.json")):
            try:
                chat = await self.get_chat(path.stem)
            except (StorageError, ValueError) as e:
                logger.warning(f"Skipping unreadable chat file {path.name}: {e}")
                continue
            if chat and chat.user_id == user_id:
                chats.append(chat)
        return sorted(chats, key=lambda chat: chat.created_at, reverse=True)

    async def delete_chat(self, chat_id: str) -> bool:
        path = self._path(chat_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete chat {chat_id}: {e}") from e
        return True


_chat_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    """Get or create the configured chat store."""
    global _chat_store
    if _chat_store is None:
        settings = get_settings()
        if settings.store == "json":
            logger.info(f"Using JSON chat store at {settings.data_dir}")
            _chat_store = JsonFileChatStore(settings.data_dir)
        else:
            logger.info("Using in-memory chat store")
            _chat_store = InMemoryChatStore()
    return _chat_store
