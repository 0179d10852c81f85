"""Projection of the conversation log into view nodes.

``project`` is a pure function of the log: no I/O, no model or tool calls. It
serves both cold replay (reload a chat and rebuild its views) and the live
path, which renders the message it just appended through ``project_message``.
"""

import base64
from collections.abc import Sequence

from chatstream.models.messages import (
    AssistantMessage,
    AssistantTextPart,
    FilePart,
    ImagePart,
    Message,
    SystemMessage,
    TextPart,
    ToolCallPart,
    ToolMessage,
    UserMessage,
)
from chatstream.models.views import (
    FileLinkView,
    ImageView,
    PlainTextView,
    TextParagraph,
    UnknownView,
    UserSubView,
    UserView,
    ViewNode,
)
from chatstream.tools.views import render_tool_part, render_tool_result
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)


def view_id(chat_id: str, index: int, n: int = 0) -> str:
    """Stable view id: ``{chat}-{index}``, ``{chat}-{index}.{n}`` for extra views."""
    return f"{chat_id}-{index}" if n == 0 else f"{chat_id}-{index}.{n}"


def displayable(messages: Sequence[Message]) -> list[Message]:
    """Messages that take part in projection, in log order."""
    return [message for message in messages if not isinstance(message, SystemMessage)]


def project(chat_id: str, messages: Sequence[Message], include_unknown: bool = False) -> list[ViewNode]:
    """Map a conversation log to its ordered view nodes.

    Entries nobody knows how to display (unknown tool names, unknown part
    kinds) are omitted unless ``include_unknown`` is set.
    """
    views: list[ViewNode] = []
    for index, message in enumerate(displayable(messages)):
        views.extend(project_message(chat_id, index, message))

    if include_unknown:
        return views
    return [view for view in views if not isinstance(view, UnknownView)]


def project_message(chat_id: str, index: int, message: Message) -> list[ViewNode]:
    """All views of one message, including explicit ``UnknownView`` arms."""
    if isinstance(message, UserMessage):
        return [_project_user(view_id(chat_id, index), message)]

    if isinstance(message, ToolMessage):
        return [
            render_tool_result(view_id(chat_id, index, n), result) for n, result in enumerate(message.results)
        ]

    if isinstance(message, AssistantMessage):
        if isinstance(message.content, str):
            return [PlainTextView(id=view_id(chat_id, index), text=message.content)]
        return _project_assistant_parts(chat_id, index, message)

    if isinstance(message, SystemMessage):
        return []

    return [UnknownView(id=view_id(chat_id, index), reason="unknown message role")]


def _project_user(view_id_: str, message: UserMessage) -> UserView:
    parts: list[UserSubView] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            parts.append(TextParagraph(text=part.text))
        elif isinstance(part, ImagePart):
            encoded = base64.b64encode(part.data).decode("ascii")
            parts.append(ImageView(media_type=part.media_type, data_url=f"data:{part.media_type};base64,{encoded}"))
        elif isinstance(part, FilePart):
            parts.append(FileLinkView(name=part.name, media_type=part.media_type, size=len(part.data)))
        else:
            logger.debug(f"Skipping unknown user part kind {part.type!r}")
    return UserView(id=view_id_, parts=parts)


def _project_assistant_parts(chat_id: str, index: int, message: AssistantMessage) -> list[ViewNode]:
    views: list[ViewNode] = []
    # Tool-call parts are bookkeeping for the model, not display
    shown = [part for part in message.content if not isinstance(part, ToolCallPart)]
    for n, part in enumerate(shown):
        id_ = view_id(chat_id, index, n)
        if isinstance(part, AssistantTextPart):
            if part.tool_name:
                views.append(render_tool_part(id_, part))
            else:
                views.append(PlainTextView(id=id_, text=part.text))
        else:
            views.append(UnknownView(id=id_, reason=f"unknown assistant part {part.type!r}"))
    return views
