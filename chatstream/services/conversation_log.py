"""Append-only conversation log backed by a chat store."""

from datetime import UTC, datetime

from chatstream.errors import ChatNotFoundError, StorageError
from chatstream.models.conversation import ChatRecord
from chatstream.models.messages import Message
from chatstream.services.chat_store import ChatStore
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)


class ConversationLog:
    """The single source of truth for one chat.

    Messages are only ever appended. Each ``append`` writes the whole chat
    record through the store before the in-memory log changes, so a failed
    write leaves the log exactly as it was.
    """

    def __init__(
        self,
        chat_id: str,
        user_id: str,
        store: ChatStore,
        messages: list[Message] | tuple[Message, ...] = (),
        created_at: datetime | None = None,
    ):
        self.chat_id = chat_id
        self.user_id = user_id
        self.store = store
        self.created_at = created_at or datetime.now(UTC)
        self._messages: tuple[Message, ...] = tuple(messages)

    @classmethod
    async def load(cls, chat_id: str, user_id: str, store: ChatStore) -> "ConversationLog":
        """Open the log of an existing chat, or start an empty one for a new chat ID."""
        chat = await store.get_chat(chat_id)
        if chat is None:
            logger.info(f"Starting new chat {chat_id} for user {user_id}")
            return cls(chat_id, user_id, store)
        if chat.user_id != user_id:
            # Do not reveal that another user's chat exists
            raise ChatNotFoundError(chat_id)
        return cls(chat_id, user_id, store, chat.messages, chat.created_at)

    def snapshot(self) -> tuple[Message, ...]:
        """Read-only view of the log at this moment."""
        return self._messages

    def __len__(self) -> int:
        return len(self._messages)

    async def append(self, *messages: Message) -> None:
        """Append one or more messages as a single unit (all or none)."""
        if not messages:
            return

        candidate = [*self._messages, *messages]
        record = ChatRecord.build(self.chat_id, self.user_id, candidate, self.created_at)
        try:
            await self.store.save_chat(record)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Chat store failed while appending to {self.chat_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to persist chat {self.chat_id}: {e}") from e

        self._messages = tuple(candidate)
        logger.debug(
            f"Appended {', '.join(m.role for m in messages)} to chat {self.chat_id} "
            f"({len(self._messages)} messages)"
        )
