"""Tests for projecting the conversation log into views."""

import pytest
from pydantic import TypeAdapter

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
    ToolResultPart,
    UserMessage,
)
from chatstream.models.views import (
    FileLinkView,
    ImageView,
    PlainTextView,
    TextParagraph,
    ToolResultView,
    UnknownView,
    UserView,
)
from chatstream.services.chat_store import JsonFileChatStore
from chatstream.services.conversation_log import ConversationLog
from chatstream.services.projection import project, project_message, view_id

messages_adapter = TypeAdapter(list[Message])


def search_exchange(query: str = "latest AI news") -> list:
    """A complete searchWeb exchange as the pipeline records it."""
    return [
        AssistantMessage(content=[ToolCallPart(tool_name="searchWeb", call_id="c1", args={"query": query})]),
        ToolMessage(
            results=[
                ToolResultPart(
                    tool_name="searchWeb",
                    call_id="c1",
                    result={"text": "News.", "sources": [{"url": "https://a.example", "title": "A"}]},
                )
            ]
        ),
        AssistantMessage(
            content=[AssistantTextPart(text="Here is the news.", tool_name="searchWeb", meta={"query": query})]
        ),
    ]


class TestViewIds:
    """Tests for stable view identifiers."""

    def test_view_id_format(self):
        assert view_id("abc", 3) == "abc-3"
        assert view_id("abc", 3, 1) == "abc-3.1"

    def test_system_messages_do_not_shift_indices(self):
        messages = [
            SystemMessage(text="be nice"),
            UserMessage(parts=[TextPart(text="hi")]),
            AssistantMessage(content="hello"),
        ]

        views = project("chat", messages)

        assert [view.id for view in views] == ["chat-0", "chat-1"]


class TestUserProjection:
    """Tests for user message views."""

    def test_text_image_and_file_parts(self):
        message = UserMessage(
            parts=[
                TextPart(text="look"),
                ImagePart(data=b"\x89PNG", media_type="image/png"),
                FilePart(data=b"a,b\n1,2\n", media_type="text/csv", name="data.csv"),
            ]
        )

        [view] = project("chat", [message])

        assert view == UserView(
            id="chat-0",
            parts=[
                TextParagraph(text="look"),
                ImageView(media_type="image/png", data_url="data:image/png;base64,iVBORw=="),
                FileLinkView(name="data.csv", media_type="text/csv", size=8),
            ],
        )

    def test_unknown_user_part_is_skipped(self):
        [message] = messages_adapter.validate_python(
            [{"role": "user", "parts": [{"type": "video", "url": "x"}, {"type": "text", "text": "hi"}]}]
        )

        [view] = project("chat", [message])

        assert view.parts == [TextParagraph(text="hi")]


class TestAssistantProjection:
    """Tests for assistant and tool message views."""

    def test_plain_text(self):
        assert project("chat", [AssistantMessage(content="hello")]) == [PlainTextView(id="chat-0", text="hello")]

    def test_tool_exchange(self):
        views = project("chat", search_exchange())

        assert views == [
            ToolResultView(
                id="chat-1",
                tool_name="searchWeb",
                source="result",
                payload={"sources": [{"url": "https://a.example", "title": "A"}]},
            ),
            ToolResultView(
                id="chat-2",
                tool_name="searchWeb",
                source="narration",
                payload={"text": "Here is the news.", "query": "latest AI news"},
            ),
        ]

    def test_failed_tool_result(self):
        message = ToolMessage(
            results=[
                ToolResultPart(
                    tool_name="generateImage",
                    call_id="c1",
                    result={"error": True, "message": "The generateImage tool could not complete the request."},
                    is_error=True,
                )
            ]
        )

        [view] = project("chat", [message])

        assert view.payload == {
            "error": True,
            "message": "The generateImage tool could not complete the request.",
        }

    def test_narration_error_flag(self):
        message = AssistantMessage(
            content=[AssistantTextPart(text="Sorry", tool_name="wikipediaSearch", meta={"query": "x", "error": True})]
        )

        [view] = project("chat", [message])

        assert view.payload == {"text": "Sorry", "query": "x", "error": True}


class TestUnknownVariants:
    """Tests that unknown log entries never break projection."""

    def test_unknown_tool_is_dropped(self):
        messages = [
            ToolMessage(results=[ToolResultPart(tool_name="teleport", call_id="c1", result={})]),
            AssistantMessage(content=[AssistantTextPart(text="done", tool_name="teleport", meta={})]),
            AssistantMessage(content="still here"),
        ]

        assert project("chat", messages) == [PlainTextView(id="chat-2", text="still here")]

    def test_unknown_entries_visible_on_request(self):
        messages = [ToolMessage(results=[ToolResultPart(tool_name="teleport", call_id="c1", result={})])]

        [view] = project("chat", messages, include_unknown=True)

        assert isinstance(view, UnknownView)
        assert view.id == "chat-0"

    def test_unknown_assistant_part_kind_is_dropped(self):
        [message] = messages_adapter.validate_python(
            [
                {
                    "role": "assistant",
                    "content": [{"type": "reasoning", "text": "hmm"}, {"type": "text", "text": "answer"}],
                }
            ]
        )

        assert project("chat", [message]) == [PlainTextView(id="chat-0.1", text="answer")]

    def test_malformed_result_is_dropped(self):
        message = ToolMessage(results=[ToolResultPart(tool_name="searchWeb", call_id="c1", result={"sources": 5})])

        assert project("chat", [message]) == []
        assert isinstance(project_message("chat", 0, message)[0], UnknownView)


class TestReplay:
    """Tests for projection of reloaded logs."""

    @pytest.mark.asyncio
    async def test_reloaded_chat_projects_identically(self, tmp_path):
        store = JsonFileChatStore(tmp_path)
        log = ConversationLog("chat1", "alice", store)
        await log.append(UserMessage(parts=[TextPart(text="q1"), ImagePart(data=b"\x00\x01")]))
        await log.append(AssistantMessage(content="a1"))
        await log.append(UserMessage(parts=[TextPart(text="q2")]))
        await log.append(*search_exchange("q2")[:2])
        await log.append(search_exchange("q2")[2])
        await log.append(UserMessage(parts=[TextPart(text="q3")]))
        await log.append(AssistantMessage(content="a3"))
        await log.append(UserMessage(parts=[TextPart(text="q4")]))
        await log.append(AssistantMessage(content="a4"))
        assert len(log) == 10

        live = project("chat1", log.snapshot())
        reloaded = await JsonFileChatStore(tmp_path).get_chat("chat1")

        assert project("chat1", reloaded.messages) == live
        assert project("chat1", reloaded.messages) == project("chat1", reloaded.messages)
