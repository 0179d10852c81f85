"""Renderable view nodes derived from the conversation log.

View nodes are never persisted. They are recomputed from the log on demand and
also pushed live while a turn is running.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ViewModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextParagraph(ViewModel):
    kind: Literal["paragraph"] = "paragraph"
    text: str


class ImageView(ViewModel):
    kind: Literal["image"] = "image"
    media_type: str
    data_url: str


class FileLinkView(ViewModel):
    kind: Literal["file"] = "file"
    name: str
    media_type: str
    size: int


UserSubView = Annotated[TextParagraph | ImageView | FileLinkView, Field(discriminator="kind")]


class UserView(ViewModel):
    """A user's turn input."""

    kind: Literal["user"] = "user"
    id: str
    parts: list[UserSubView]


class PlainTextView(ViewModel):
    """Assistant text not tied to any tool."""

    kind: Literal["text"] = "text"
    id: str
    text: str
    streaming: bool = False


class ToolResultView(ViewModel):
    """Display of a tool's raw result or of its narration."""

    kind: Literal["tool"] = "tool"
    id: str
    tool_name: str
    source: Literal["result", "narration"]
    payload: dict[str, Any]
    streaming: bool = False


class LoadingView(ViewModel):
    """Shown while a tool runs. Only ever produced live."""

    kind: Literal["loading"] = "loading"
    id: str
    tool_name: str
    summary: str = ""


class UnknownView(ViewModel):
    """Explicit arm for log entries nothing knows how to display."""

    kind: Literal["unknown"] = "unknown"
    id: str
    reason: str


ViewNode = Annotated[
    UserView | PlainTextView | ToolResultView | LoadingView | UnknownView,
    Field(discriminator="kind"),
]
