"""Tool pipeline: the state machine that runs one tool invocation.

A pipeline announces the tool on the display channel, executes it, records
the call and its result in the conversation log, then streams a narration of
the result from a second model pass. Every phase change goes through
``ToolInvocation.advance`` so an out-of-order step fails loudly instead of
silently corrupting the log.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from chatstream.clients.base import ModelClient
from chatstream.errors import ChatStreamError, ModelCallError, PipelineStateError, ToolExecutionError
from chatstream.models.llm import TextDelta
from chatstream.models.messages import AssistantMessage, AssistantTextPart, ToolCallPart, ToolMessage, ToolResultPart
from chatstream.models.views import LoadingView, ViewNode
from chatstream.services.conversation_log import ConversationLog
from chatstream.services.projection import displayable, project_message, view_id
from chatstream.services.streams import StreamChannel
from chatstream.tools.base import ToolDefinition
from chatstream.tools.views import render_tool_part, render_tool_result
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

NARRATION_APOLOGY = "Sorry, I couldn't summarize the result this time."


class ToolPhase(StrEnum):
    INVOKED = "invoked"
    LOADING_EMITTED = "loading_emitted"
    EXECUTED = "executed"
    FAILED = "failed"
    RESULT_PERSISTED = "result_persisted"
    NARRATION_STREAMING = "narration_streaming"
    COMPLETED = "completed"


ALLOWED_TRANSITIONS: dict[ToolPhase, frozenset[ToolPhase]] = {
    ToolPhase.INVOKED: frozenset({ToolPhase.LOADING_EMITTED}),
    ToolPhase.LOADING_EMITTED: frozenset({ToolPhase.EXECUTED, ToolPhase.FAILED}),
    ToolPhase.EXECUTED: frozenset({ToolPhase.RESULT_PERSISTED}),
    # Execution failure continues with a degraded result, narration failure ends the run
    ToolPhase.FAILED: frozenset({ToolPhase.RESULT_PERSISTED, ToolPhase.COMPLETED}),
    ToolPhase.RESULT_PERSISTED: frozenset({ToolPhase.NARRATION_STREAMING}),
    ToolPhase.NARRATION_STREAMING: frozenset({ToolPhase.COMPLETED, ToolPhase.FAILED}),
    ToolPhase.COMPLETED: frozenset(),
}


@dataclass
class ToolInvocation:
    """Ephemeral record of one tool call; only its messages outlive the turn."""

    tool_name: str
    call_id: str
    args: dict[str, Any]
    phase: ToolPhase = ToolPhase.INVOKED
    history: list[ToolPhase] = field(default_factory=lambda: [ToolPhase.INVOKED])
    error: ChatStreamError | None = None

    def advance(self, target: ToolPhase) -> None:
        if target not in ALLOWED_TRANSITIONS[self.phase]:
            raise PipelineStateError(self.phase.value, target.value)
        self.phase = target
        self.history.append(target)


@dataclass
class TurnContext:
    """Everything one turn needs, passed explicitly down the call chain."""

    turn_id: str
    log: ConversationLog
    display: StreamChannel[ViewNode | None]
    client: ModelClient
    model: str
    system_prompt: str

    @property
    def chat_id(self) -> str:
        return self.log.chat_id

    def next_index(self) -> int:
        """Projection index the next appended message will get."""
        return len(displayable(self.log.snapshot()))


def degraded_result(tool_name: str) -> dict[str, Any]:
    return {"error": True, "message": f"The {tool_name} tool could not complete the request."}


class ToolPipeline:
    """Runs a validated tool invocation to completion within a turn."""

    def __init__(self, ctx: TurnContext, tool: ToolDefinition):
        self.ctx = ctx
        self.tool = tool

    async def run(self, invocation: ToolInvocation, args: BaseModel) -> ViewNode:
        """Drive the invocation through every phase and return the final view.

        Tool and narration failures are absorbed into degraded output. Model
        and storage failures outside narration propagate to the caller.
        """
        ctx, tool = self.ctx, self.tool
        call_index = ctx.next_index()
        # call message, then tool result, then narration
        result_index = call_index + 1
        narration_index = call_index + 2

        summary = await self._prepare(args)
        ctx.display.update(LoadingView(id=view_id(ctx.chat_id, narration_index), tool_name=tool.name, summary=summary))
        invocation.advance(ToolPhase.LOADING_EMITTED)
        logger.info(f"Running tool {tool.name} ({invocation.call_id}) for chat {ctx.chat_id}")

        result, is_error = await self._execute(invocation, args, summary)

        result_part = ToolResultPart(
            tool_name=tool.name, call_id=invocation.call_id, result=result, is_error=is_error
        )
        await ctx.log.append(
            AssistantMessage(
                content=[ToolCallPart(tool_name=tool.name, call_id=invocation.call_id, args=invocation.args)]
            ),
            ToolMessage(results=[result_part]),
        )
        invocation.advance(ToolPhase.RESULT_PERSISTED)
        ctx.display.update(render_tool_result(view_id(ctx.chat_id, result_index), result_part))

        meta = tool.build_meta(args, summary, result)
        message = await self._narrate(invocation, narration_index, meta)
        invocation.advance(ToolPhase.COMPLETED)

        return project_message(ctx.chat_id, narration_index, message)[0]

    async def _prepare(self, args: BaseModel) -> str:
        if self.tool.prepare is None:
            return ""
        try:
            return await self.tool.prepare(args)
        except Exception as e:
            logger.warning(f"Prepare step of {self.tool.name} failed, continuing without summary: {e}")
            return ""

    async def _execute(self, invocation: ToolInvocation, args: BaseModel, summary: str) -> tuple[Any, bool]:
        try:
            # Store exactly what a reload will see
            result = to_jsonable_python(await self.tool.execute(args, summary))
        except Exception as e:
            error = ToolExecutionError(self.tool.name, e)
            logger.error(f"{error.message} (call {invocation.call_id})", exc_info=True)
            invocation.error = error
            invocation.advance(ToolPhase.FAILED)
            return degraded_result(self.tool.name), True

        invocation.advance(ToolPhase.EXECUTED)
        return result, False

    async def _narrate(self, invocation: ToolInvocation, index: int, meta: dict[str, Any]) -> AssistantMessage:
        ctx, tool = self.ctx, self.tool
        id_ = view_id(ctx.chat_id, index)
        appended: list[AssistantMessage] = []

        async def persist(text: str) -> None:
            message = AssistantMessage(content=[AssistantTextPart(text=text, tool_name=tool.name, meta=meta)])
            await ctx.log.append(message)
            appended.append(message)

        narration: StreamChannel[str] = StreamChannel("", name=f"narration:{invocation.call_id}")
        narration.on_done(persist)
        invocation.advance(ToolPhase.NARRATION_STREAMING)

        try:
            async for event in ctx.client.stream(ctx.model, ctx.log.snapshot(), tool.narration_system_prompt):
                if not isinstance(event, TextDelta):
                    logger.warning(f"Ignoring tool request during narration of {tool.name}")
                    continue
                narration.update(event.text)
                part = AssistantTextPart(text=narration.value, tool_name=tool.name, meta=meta)
                ctx.display.update(render_tool_part(id_, part, streaming=True))
        except ModelCallError as e:
            logger.error(f"Narration of {tool.name} failed: {e}")
            narration.error(e)
            invocation.error = e
            invocation.advance(ToolPhase.FAILED)
            message = AssistantMessage(
                content=[AssistantTextPart(text=NARRATION_APOLOGY, tool_name=tool.name, meta={**meta, "error": True})]
            )
            await ctx.log.append(message)
            return message

        await narration.done()
        return appended[0]
