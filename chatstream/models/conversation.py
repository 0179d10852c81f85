"""Chat record, turn input and API data models."""

import base64
import binascii
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from chatstream.models.messages import Message, first_user_text
from chatstream.models.views import ViewNode

DEFAULT_CHAT_TITLE = "New chat"
MAX_TITLE_CHARS = 100


def derive_title(messages: list[Message]) -> str:
    """Title a chat after its first user text, truncated to 100 characters."""
    text = first_user_text(messages)
    if not text or not text.strip():
        return DEFAULT_CHAT_TITLE
    return text[:MAX_TITLE_CHARS]


class ChatRecord(BaseModel):
    """Persisted chat: the durable conversation log plus bookkeeping."""

    id: str
    title: str = DEFAULT_CHAT_TITLE
    user_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    messages: list[Message] = Field(default_factory=list)
    path: str = ""

    @classmethod
    def build(cls, chat_id: str, user_id: str, messages: list[Message], created_at: datetime | None = None):
        """Build a record with derived title and path."""
        return cls(
            id=chat_id,
            title=derive_title(messages),
            user_id=user_id,
            created_at=created_at or datetime.now(UTC),
            messages=messages,
            path=f"/chat/{chat_id}",
        )


# Internal turn input


@dataclass
class ImageAttachment:
    data: bytes
    media_type: str = "image/png"


@dataclass
class FileAttachment:
    data: bytes
    media_type: str
    name: str


@dataclass
class TabularText:
    name: str
    text: str


@dataclass
class TurnInput:
    """Everything a client submits for one turn."""

    text: str
    model: str
    images: list[ImageAttachment] = field(default_factory=list)
    files: list[FileAttachment] = field(default_factory=list)
    tabular_text: list[TabularText] = field(default_factory=list)


def decode_data_url(value: str, default_media_type: str = "image/png") -> tuple[str, bytes]:
    """Decode a base64 payload, with or without a ``data:<type>;base64,`` header."""
    media_type = default_media_type
    payload = value
    if value.startswith("data:") and "," in value:
        header, payload = value.split(",", 1)
        media_type = header[len("data:") :].split(";", 1)[0] or default_media_type
    try:
        return media_type, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError("Attachment is not valid base64") from e


# API models


class FileUpload(BaseModel):
    """A file attached to a turn request."""

    name: str = Field(..., min_length=1, max_length=255)
    mime_type: str
    data: str = Field(..., description="Base64 payload, optionally as a data URL")


class TabularUpload(BaseModel):
    """Tabular data (e.g. CSV) already converted to text by the client."""

    name: str
    text: str


class TurnRequest(BaseModel):
    """Request model for submitting a turn."""

    message: str = ""
    model: str | None = None
    images: list[str] = Field(default_factory=list, description="Base64 images, optionally as data URLs")
    files: list[FileUpload] = Field(default_factory=list)
    tabular_text: list[TabularUpload] = Field(default_factory=list)

    @field_validator("images")
    @classmethod
    def validate_images(cls, v: list[str]) -> list[str]:
        """Reject payloads that are not base64 early."""
        for image in v:
            decode_data_url(image)
        return v

    def to_turn_input(self, default_model: str) -> TurnInput:
        """Decode attachments into the internal turn input."""
        images = []
        for image in self.images:
            media_type, data = decode_data_url(image)
            images.append(ImageAttachment(data=data, media_type=media_type))

        files = []
        for upload in self.files:
            _, data = decode_data_url(upload.data, upload.mime_type)
            files.append(FileAttachment(data=data, media_type=upload.mime_type, name=upload.name))

        return TurnInput(
            text=self.message,
            model=self.model or default_model,
            images=images,
            files=files,
            tabular_text=[TabularText(name=t.name, text=t.text) for t in self.tabular_text],
        )


class TurnResponse(BaseModel):
    """Response model for a completed turn."""

    turn_id: str
    chat_id: str
    view: ViewNode


class NewChatResponse(BaseModel):
    chat_id: str


class ChatResponse(BaseModel):
    """A chat replayed into view nodes."""

    id: str
    title: str
    created_at: datetime
    path: str
    views: list[ViewNode]


class ChatSummary(BaseModel):
    id: str
    title: str
    created_at: datetime
    path: str


class GenerateRequest(BaseModel):
    """Request model for a single prompt completion."""

    prompt: str = ""
    model: str = "o1-mini"


class GenerateResponse(BaseModel):
    res: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
