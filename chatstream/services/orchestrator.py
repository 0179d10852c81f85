"""Turn orchestration: user message in, one final view out."""

from dataclasses import dataclass
from datetime import UTC, datetime

from chatstream.config import Settings, get_settings
from chatstream.errors import ToolArgumentError
from chatstream.models.conversation import TurnInput
from chatstream.models.llm import TextDelta, ToolDirective, ToolSpec
from chatstream.models.messages import AssistantMessage, ContentPart, FilePart, ImagePart, TextPart, UserMessage
from chatstream.models.views import PlainTextView, ViewNode
from chatstream.services.chat_locks import ChatLocks
from chatstream.services.chat_store import ChatStore, get_chat_store, validate_chat_id
from chatstream.services.conversation_log import ConversationLog
from chatstream.services.llm import ModelRouter, get_model_router
from chatstream.services.pipeline import ToolInvocation, ToolPipeline, TurnContext
from chatstream.services.projection import project_message, view_id
from chatstream.services.streams import StreamChannel
from chatstream.tools.registry import ToolsRegistry, get_tools_registry
from chatstream.utils.ids import new_id
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TurnResult:
    turn_id: str
    chat_id: str
    view: ViewNode


def csv_text(text: str) -> str:
    return "Treat the below text as csv data \n" + text + "\n Csv data ends here."


def build_user_parts(turn_input: TurnInput) -> list[ContentPart]:
    """Content parts of the user message, in submission order."""
    parts: list[ContentPart] = []
    if turn_input.text:
        parts.append(TextPart(text=turn_input.text))
    for upload in turn_input.files:
        parts.append(FilePart(data=upload.data, media_type=upload.media_type, name=upload.name))
    for image in turn_input.images:
        parts.append(ImagePart(data=image.data, media_type=image.media_type))
    for table in turn_input.tabular_text:
        parts.append(TextPart(text=csv_text(table.text)))
    return parts


class TurnOrchestrator:
    """Runs chat turns against the conversation log.

    A turn appends the user message, streams the selected model with the tool
    specs, and either records a plain text answer or hands the first tool
    request to a ``ToolPipeline``. Turns on the same chat are serialized.
    """

    def __init__(
        self,
        store: ChatStore,
        registry: ToolsRegistry,
        router: ModelRouter,
        settings: Settings | None = None,
        locks: ChatLocks | None = None,
    ):
        self.store = store
        self.registry = registry
        self.router = router
        self.settings = settings or get_settings()
        self.locks = locks or ChatLocks()

    async def submit_turn(
        self,
        chat_id: str,
        user_id: str,
        turn_input: TurnInput,
        display: StreamChannel[ViewNode | None] | None = None,
    ) -> TurnResult:
        """Run one turn to completion.

        Args:
            chat_id: Chat to append to; created on first use
            user_id: Owner of the chat
            turn_input: Text and attachments submitted by the client
            display: Channel receiving live views; settles with the final view

        Returns:
            The turn id and the final view of the turn

        Raises:
            ValueError: If the chat id or message is invalid
            ChatNotFoundError: If the chat belongs to another user
            ModelCallError: If the model fails; only the user message is kept
            StorageError: If the log cannot be persisted
        """
        display = display or StreamChannel(None, append=False, name=f"display:{chat_id}")

        try:
            validate_chat_id(chat_id)
            self._validate_input(turn_input)
            client, model = self.router.resolve(turn_input.model)
            client.validate_message_tokens(turn_input.text)

            async with self.locks.hold(chat_id):
                log = await ConversationLog.load(chat_id, user_id, self.store)
                ctx = TurnContext(
                    turn_id=new_id(),
                    log=log,
                    display=display,
                    client=client,
                    model=model,
                    system_prompt=self._system_prompt(),
                )
                logger.info(f"Turn {ctx.turn_id} on chat {chat_id} with model {model}")

                await log.append(UserMessage(parts=build_user_parts(turn_input)))
                view = await self._respond(ctx)
        except Exception as e:
            logger.error(f"Turn on chat {chat_id} failed: {e}")
            if not display.settled:
                display.error(e)
            raise

        await display.done(view)
        return TurnResult(turn_id=ctx.turn_id, chat_id=chat_id, view=view)

    def _validate_input(self, turn_input: TurnInput) -> None:
        if len(turn_input.text) > self.settings.max_message_chars:
            raise ValueError(f"Message exceeds {self.settings.max_message_chars} characters")
        if not (turn_input.text.strip() or turn_input.images or turn_input.files or turn_input.tabular_text):
            raise ValueError("Message cannot be empty")

    def _system_prompt(self) -> str:
        today = datetime.now(UTC).date().isoformat()
        return f"{self.settings.system_prompt}. Today's date is {today}."

    async def _respond(self, ctx: TurnContext) -> ViewNode:
        index = ctx.next_index()
        try:
            text, directive = await self._stream_model(ctx, index, self.registry.tool_specs())
            if directive is None:
                return await self._finish_text(ctx, index, text)

            tool = self.registry.get(directive.tool_name)
            if tool is None:
                raise ToolArgumentError(directive.tool_name, "unknown tool")
            args = tool.parse_input(directive.args)
        except ToolArgumentError as e:
            logger.warning(f"Falling back to a plain answer: {e.message}")
            text, _ = await self._stream_model(ctx, index, None)
            return await self._finish_text(ctx, index, text)

        invocation = ToolInvocation(
            tool_name=tool.name,
            call_id=directive.call_id,
            args=args.model_dump(mode="json", by_alias=True),
        )
        return await ToolPipeline(ctx, tool).run(invocation, args)

    async def _stream_model(
        self, ctx: TurnContext, index: int, tools: list[ToolSpec] | None
    ) -> tuple[StreamChannel[str], ToolDirective | None]:
        """Stream the model into a text channel until it finishes or asks for a tool.

        Only the first tool request of a turn is honored. Text streamed ahead
        of it is shown live but never recorded.
        """
        text: StreamChannel[str] = StreamChannel("", name=f"text:{ctx.turn_id}")
        id_ = view_id(ctx.chat_id, index)
        try:
            async for event in ctx.client.stream(ctx.model, ctx.log.snapshot(), ctx.system_prompt, tools):
                if isinstance(event, ToolDirective):
                    if tools is None:
                        logger.warning(f"Ignoring tool request {event.tool_name} from a call without tools")
                        continue
                    await text.done()
                    return text, event
                if isinstance(event, TextDelta):
                    text.update(event.text)
                    ctx.display.update(PlainTextView(id=id_, text=text.value, streaming=True))
        except Exception as e:
            text.error(e)
            raise
        return text, None

    async def _finish_text(self, ctx: TurnContext, index: int, text: StreamChannel[str]) -> ViewNode:
        appended: list[AssistantMessage] = []

        async def persist(full_text: str) -> None:
            message = AssistantMessage(content=full_text)
            await ctx.log.append(message)
            appended.append(message)

        text.on_done(persist)
        await text.done()
        return project_message(ctx.chat_id, index, appended[0])[0]


_orchestrator: TurnOrchestrator | None = None


def get_orchestrator() -> TurnOrchestrator:
    """Get or create orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TurnOrchestrator(get_chat_store(), get_tools_registry(), get_model_router())
    return _orchestrator
