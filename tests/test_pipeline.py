"""Tests for the tool pipeline state machine."""

import pytest

from chatstream.errors import ModelCallError, PipelineStateError
from chatstream.models.llm import TextDelta
from chatstream.models.messages import AssistantMessage, TextPart, ToolCallPart, ToolMessage, UserMessage
from chatstream.models.views import LoadingView, ToolResultView
from chatstream.services.conversation_log import ConversationLog
from chatstream.services.pipeline import (
    NARRATION_APOLOGY,
    ToolInvocation,
    ToolPhase,
    ToolPipeline,
    TurnContext,
)
from chatstream.services.streams import ChannelUpdate, StreamChannel


@pytest.fixture
def log(store):
    return ConversationLog("chat1", "alice", store)


@pytest.fixture
def display():
    return StreamChannel(None, append=False, name="display")


@pytest.fixture
def ctx(log, display, model_client):
    return TurnContext(
        turn_id="turn1",
        log=log,
        display=display,
        client=model_client,
        model="gpt-4o",
        system_prompt="You are a helpful assistant",
    )


async def start(ctx, registry, tool_name, args):
    await ctx.log.append(UserMessage(parts=[TextPart(text="question")]))
    tool = registry.get(tool_name)
    parsed = tool.parse_input(args)
    invocation = ToolInvocation(tool_name=tool_name, call_id="call_1", args=parsed.model_dump(by_alias=True))
    return ToolPipeline(ctx, tool), invocation, parsed


def updates(subscription_events):
    return [event.value for event in subscription_events if isinstance(event, ChannelUpdate)]


class TestToolInvocation:
    """Tests for phase transitions."""

    def test_happy_path_transitions(self):
        invocation = ToolInvocation(tool_name="searchWeb", call_id="c1", args={})
        for phase in (
            ToolPhase.LOADING_EMITTED,
            ToolPhase.EXECUTED,
            ToolPhase.RESULT_PERSISTED,
            ToolPhase.NARRATION_STREAMING,
            ToolPhase.COMPLETED,
        ):
            invocation.advance(phase)

        assert invocation.history[0] is ToolPhase.INVOKED
        assert invocation.phase is ToolPhase.COMPLETED

    def test_failed_execution_still_persists(self):
        invocation = ToolInvocation(tool_name="searchWeb", call_id="c1", args={})
        invocation.advance(ToolPhase.LOADING_EMITTED)
        invocation.advance(ToolPhase.FAILED)
        invocation.advance(ToolPhase.RESULT_PERSISTED)

        assert invocation.phase is ToolPhase.RESULT_PERSISTED

    def test_illegal_transition_raises(self):
        invocation = ToolInvocation(tool_name="searchWeb", call_id="c1", args={})

        with pytest.raises(PipelineStateError, match="invoked -> executed"):
            invocation.advance(ToolPhase.EXECUTED)

    def test_completed_is_terminal(self):
        invocation = ToolInvocation(tool_name="searchWeb", call_id="c1", args={}, phase=ToolPhase.COMPLETED)

        with pytest.raises(PipelineStateError):
            invocation.advance(ToolPhase.FAILED)


class TestToolPipeline:
    """Tests for running tools through the pipeline."""

    @pytest.mark.asyncio
    async def test_loading_is_emitted_before_execution(self, ctx, registry, knowledge, model_client):
        pipeline, invocation, args = await start(ctx, registry, "wikipediaSearch", {"query": "Alan Turing"})
        observed = {}

        async def search(query):
            observed["display"] = ctx.display.value
            observed["log_length"] = len(ctx.log)
            return {"query": query, "title": "Alan Turing", "content": "English mathematician."}

        knowledge.search_wikipedia.side_effect = search
        model_client.script(TextDelta("Turing was a mathematician."))

        await pipeline.run(invocation, args)

        assert observed["display"] == LoadingView(id="chat1-3", tool_name="wikipediaSearch", summary="Alan Turing")
        # Only the user message is in the log while the tool runs
        assert observed["log_length"] == 1

    @pytest.mark.asyncio
    async def test_call_and_result_precede_narration(self, ctx, registry, model_client):
        pipeline, invocation, args = await start(ctx, registry, "wikipediaSearch", {"query": "Alan Turing"})
        model_client.script(TextDelta("Turing "), TextDelta("was a mathematician."))

        view = await pipeline.run(invocation, args)

        user, call, result, narration = ctx.log.snapshot()
        assert isinstance(call.content[0], ToolCallPart)
        assert isinstance(result, ToolMessage)
        assert narration.content[0].text == "Turing was a mathematician."
        assert narration.content[0].meta == {"query": "Alan Turing"}
        # The narration pass sees the recorded result
        assert model_client.calls[0].messages[-1] == result
        assert model_client.calls[0].tools is None
        assert view == ToolResultView(
            id="chat1-3",
            tool_name="wikipediaSearch",
            source="narration",
            payload={"text": "Turing was a mathematician.", "query": "Alan Turing"},
        )
        assert invocation.history == [
            ToolPhase.INVOKED,
            ToolPhase.LOADING_EMITTED,
            ToolPhase.EXECUTED,
            ToolPhase.RESULT_PERSISTED,
            ToolPhase.NARRATION_STREAMING,
            ToolPhase.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_display_sequence(self, ctx, registry, model_client):
        subscription = ctx.display.subscribe()
        pipeline, invocation, args = await start(ctx, registry, "wikipediaSearch", {"query": "Alan Turing"})
        model_client.script(TextDelta("A"), TextDelta("B"))

        await pipeline.run(invocation, args)
        await ctx.display.done()

        views = updates([event async for event in subscription])
        assert isinstance(views[0], LoadingView)
        assert views[1].source == "result"
        assert [v.payload["text"] for v in views[2:]] == ["A", "AB"]
        assert all(v.streaming for v in views[2:])

    @pytest.mark.asyncio
    async def test_failing_tool_degrades(self, ctx, registry, openai_tools, model_client):
        pipeline, invocation, args = await start(ctx, registry, "generateImage", {"prompt": "a fox"})
        openai_tools.generate_image.side_effect = RuntimeError("quota exceeded")
        model_client.script(TextDelta("I could not create the image."))

        view = await pipeline.run(invocation, args)

        result = ctx.log.snapshot()[2].results[0]
        assert result.is_error is True
        assert result.result["error"] is True
        assert "quota" not in result.result["message"]
        assert ToolPhase.FAILED in invocation.history
        assert invocation.phase is ToolPhase.COMPLETED
        assert view.payload == {"text": "I could not create the image.", "image_url": ""}

    @pytest.mark.asyncio
    async def test_unserializable_result_degrades(self, ctx, registry, openai_tools, model_client):
        pipeline, invocation, args = await start(ctx, registry, "generateImage", {"prompt": "a fox"})
        openai_tools.generate_image.return_value = object()
        model_client.script(TextDelta("I could not create the image."))

        await pipeline.run(invocation, args)

        result = ctx.log.snapshot()[2].results[0]
        assert result.is_error is True
        assert result.result == {"error": True, "message": "The generateImage tool could not complete the request."}
        assert invocation.history[:3] == [ToolPhase.INVOKED, ToolPhase.LOADING_EMITTED, ToolPhase.FAILED]
        assert invocation.phase is ToolPhase.COMPLETED

    @pytest.mark.asyncio
    async def test_failing_narration_appends_apology(self, ctx, registry, model_client):
        pipeline, invocation, args = await start(ctx, registry, "wikipediaSearch", {"query": "Alan Turing"})
        model_client.script(TextDelta("Tur"), ModelCallError("gpt-4o", "connection reset"))

        view = await pipeline.run(invocation, args)

        narration = ctx.log.snapshot()[-1]
        assert isinstance(narration, AssistantMessage)
        assert narration.content[0].text == NARRATION_APOLOGY
        assert narration.content[0].meta["error"] is True
        assert view.payload["error"] is True
        assert invocation.history[-2:] == [ToolPhase.FAILED, ToolPhase.COMPLETED]

    @pytest.mark.asyncio
    async def test_prepare_failure_degrades_to_original_query(self, ctx, registry, openai_tools, model_client):
        pipeline, invocation, args = await start(ctx, registry, "searchWeb", {"query": "latest AI news"})
        model_client.completions.append(ModelCallError("gpt-4o-mini", "timeout"))
        model_client.script(TextDelta("News."))

        await pipeline.run(invocation, args)

        openai_tools.web_search.assert_awaited_once_with("latest AI news")

    @pytest.mark.asyncio
    async def test_unexpected_prepare_error_gives_empty_summary(self, ctx, registry, model_client, display):
        subscription = display.subscribe()
        pipeline, invocation, args = await start(ctx, registry, "searchWeb", {"query": "latest AI news"})
        model_client.completions.append(RuntimeError("bug"))
        model_client.script(TextDelta("News."))

        await pipeline.run(invocation, args)
        await display.done()

        loading = updates([event async for event in subscription])[0]
        assert loading.summary == ""
