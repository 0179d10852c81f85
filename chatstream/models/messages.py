"""Conversation log message models.

These are the durable records of a chat. They are frozen once created and are
only ever appended to a conversation log, never edited. Part unions carry an
``unknown`` arm so records written by other versions still load.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from chatstream.utils.ids import new_id


class LogModel(BaseModel):
    """Base for everything stored in the conversation log."""

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")


def _kind_discriminator(known: frozenset[str]):
    def discriminate(value: Any) -> str:
        kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
        return kind if kind in known else "unknown"

    return discriminate


# User content parts


class TextPart(LogModel):
    """Plain text typed by the user (or text extracted from an attachment)."""

    type: Literal["text"] = "text"
    text: str


class ImagePart(LogModel):
    """Inline image attachment."""

    type: Literal["image"] = "image"
    data: bytes
    media_type: str = "image/png"


class FilePart(LogModel):
    """Inline file attachment."""

    type: Literal["file"] = "file"
    data: bytes
    media_type: str
    name: str


class UnknownPart(LogModel):
    """A part kind this version does not understand."""

    model_config = ConfigDict(extra="allow")

    type: str


ContentPart = Annotated[
    Annotated[TextPart, Tag("text")]
    | Annotated[ImagePart, Tag("image")]
    | Annotated[FilePart, Tag("file")]
    | Annotated[UnknownPart, Tag("unknown")],
    Discriminator(_kind_discriminator(frozenset({"text", "image", "file"}))),
]


# Assistant content parts


class ToolCallPart(LogModel):
    """Record that the assistant invoked a tool."""

    type: Literal["tool-call"] = "tool-call"
    tool_name: str
    call_id: str
    args: dict[str, Any]


class AssistantTextPart(LogModel):
    """Assistant text, optionally narrating the result of a tool."""

    type: Literal["text"] = "text"
    text: str
    tool_name: str | None = None
    meta: Any = None


class UnknownAssistantPart(LogModel):
    """An assistant part kind this version does not understand."""

    model_config = ConfigDict(extra="allow")

    type: str


AssistantPart = Annotated[
    Annotated[ToolCallPart, Tag("tool-call")]
    | Annotated[AssistantTextPart, Tag("text")]
    | Annotated[UnknownAssistantPart, Tag("unknown")],
    Discriminator(_kind_discriminator(frozenset({"tool-call", "text"}))),
]


class ToolResultPart(LogModel):
    """The JSON-serializable outcome of one tool invocation."""

    type: Literal["tool-result"] = "tool-result"
    tool_name: str
    call_id: str
    result: Any
    is_error: bool = False


# Messages


class UserMessage(LogModel):
    id: str = Field(default_factory=new_id)
    role: Literal["user"] = "user"
    parts: list[ContentPart]


class AssistantMessage(LogModel):
    id: str = Field(default_factory=new_id)
    role: Literal["assistant"] = "assistant"
    content: str | list[AssistantPart]


class ToolMessage(LogModel):
    id: str = Field(default_factory=new_id)
    role: Literal["tool"] = "tool"
    results: list[ToolResultPart]


class SystemMessage(LogModel):
    id: str = Field(default_factory=new_id)
    role: Literal["system"] = "system"
    text: str


Message = Annotated[
    UserMessage | AssistantMessage | ToolMessage | SystemMessage,
    Field(discriminator="role"),
]


def first_user_text(messages: list[Message] | tuple[Message, ...]) -> str | None:
    """Return the first text part of the first user message, if any."""
    for message in messages:
        if isinstance(message, UserMessage):
            for part in message.parts:
                if isinstance(part, TextPart):
                    return part.text
            return None
    return None
