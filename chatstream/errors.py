"""Exception hierarchy for the chat engine."""

from typing import Any


class ChatStreamError(Exception):
    """Base exception for all chat engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ----- Model errors -----


class ModelCallError(ChatStreamError):
    """The language model call failed. Fatal to the turn."""

    def __init__(self, model: str, cause: Exception | str) -> None:
        super().__init__(
            message=f"Model call to {model} failed: {cause}",
            details={"model": model},
        )
        self.model = model


# ----- Tool errors -----


class ToolArgumentError(ChatStreamError):
    """The model asked for a tool with arguments that fail the tool's schema."""

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid arguments for tool {tool_name}: {reason}",
            details={"tool_name": tool_name},
        )
        self.tool_name = tool_name


class ToolExecutionError(ChatStreamError):
    """A tool's external call failed."""

    def __init__(self, tool_name: str, cause: Exception | str) -> None:
        super().__init__(
            message=f"Tool {tool_name} failed: {cause}",
            details={"tool_name": tool_name},
        )
        self.tool_name = tool_name


# ----- Channel / state machine errors -----


class ChannelProtocolError(ChatStreamError):
    """A stream channel was used against its single-writer contract."""

    pass


class ChannelClosedError(ChannelProtocolError):
    """update() was called on a settled channel."""

    def __init__(self) -> None:
        super().__init__("Cannot update a settled stream channel")


class AlreadySettledError(ChannelProtocolError):
    """done() or error() was called on a settled channel."""

    def __init__(self, state: str) -> None:
        super().__init__(f"Stream channel already settled ({state})", details={"state": state})


class PipelineStateError(ChatStreamError):
    """A tool pipeline attempted an illegal phase transition."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            message=f"Illegal tool pipeline transition {current} -> {target}",
            details={"current": current, "target": target},
        )


# ----- Storage errors -----


class StorageError(ChatStreamError):
    """Persisting or loading a chat failed. Fatal to the turn."""

    pass


class ChatNotFoundError(ChatStreamError):
    """The requested chat does not exist for this user."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(message=f"Chat {chat_id} not found", details={"chat_id": chat_id})
        self.chat_id = chat_id
