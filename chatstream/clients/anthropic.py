"""Anthropic API client with rate limiting and error handling."""

import asyncio
import base64
import json
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

import tiktoken
from anthropic import APIError, AsyncAnthropic
from anthropic.types import Message as AnthropicResponseMessage
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel, ValidationError

from chatstream.clients.base import ModelClient, attachment_text, tool_result_content
from chatstream.errors import ModelCallError
from chatstream.models.llm import LLMUsage, ModelStream, TextDelta, ToolDirective, ToolSpec
from chatstream.models.messages import (
    AssistantMessage,
    AssistantTextPart,
    FilePart,
    ImagePart,
    Message,
    TextPart,
    ToolCallPart,
    ToolMessage,
    ToolResultPart,
    UserMessage,
)
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

STRUCTURED_TOOL_NAME = "emit_result"


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicMessage(BaseModel):
    """Message format for Anthropic API."""

    role: Literal["user", "assistant"]
    content: str | list[dict[str, Any]]


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    max_tokens: int = 4096
    temperature: float = 0.3
    max_retries: int = 3
    retry_delay: float = 1.0

    # Token limits for validation and truncation
    max_message_tokens: int = 8000
    max_conversation_tokens: int = 200000
    token_headroom: int = 4096

    requests_per_minute: int = 50
    tokens_per_minute: int = 40_000


class AnthropicRateLimiter:
    """Moving-window rate limiter for requests and tokens."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the rate limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=estimated_tokens):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


def to_anthropic_messages(messages: Sequence[Message], tool_blocks: bool = True) -> list[AnthropicMessage]:
    """Map the conversation log onto Anthropic's alternating message format.

    System messages are dropped (the system prompt travels separately), tool
    results become user-side ``tool_result`` blocks and consecutive messages of
    the same role are merged. The API rejects ``tool_use`` and ``tool_result``
    blocks in a request without tools, so with ``tool_blocks=False`` tool calls
    and results are rendered as text instead.
    """
    mapped: list[AnthropicMessage] = []

    for message in messages:
        role: Literal["user", "assistant"]
        blocks: list[dict[str, Any]] = []

        if isinstance(message, UserMessage):
            role = "user"
            for part in message.parts:
                if isinstance(part, TextPart):
                    if part.text:
                        blocks.append({"type": "text", "text": part.text})
                elif isinstance(part, ImagePart):
                    blocks.append(
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": part.media_type,
                                "data": base64.b64encode(part.data).decode("ascii"),
                            },
                        }
                    )
                elif isinstance(part, FilePart):
                    blocks.append(_file_block(part))
        elif isinstance(message, AssistantMessage):
            role = "assistant"
            if isinstance(message.content, str):
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
            else:
                for part in message.content:
                    if isinstance(part, ToolCallPart):
                        blocks.append(_tool_use_block(part) if tool_blocks else _tool_call_text(part))
                    elif isinstance(part, AssistantTextPart) and part.text:
                        blocks.append({"type": "text", "text": part.text})
        elif isinstance(message, ToolMessage):
            role = "user"
            for result in message.results:
                blocks.append(_tool_result_block(result) if tool_blocks else _tool_result_text(result))
        else:
            continue

        if not blocks:
            continue

        if mapped and mapped[-1].role == role:
            previous = mapped[-1]
            previous_blocks = previous.content if isinstance(previous.content, list) else []
            mapped[-1] = AnthropicMessage(role=role, content=[*previous_blocks, *blocks])
        else:
            mapped.append(AnthropicMessage(role=role, content=blocks))

    return mapped


def _tool_use_block(part: ToolCallPart) -> dict[str, Any]:
    return {"type": "tool_use", "id": part.call_id, "name": part.tool_name, "input": part.args}


def _tool_result_block(result: ToolResultPart) -> dict[str, Any]:
    return {
        "type": "tool_result",
        "tool_use_id": result.call_id,
        "content": tool_result_content(result.result),
        "is_error": result.is_error,
    }


def _tool_call_text(part: ToolCallPart) -> dict[str, Any]:
    return {"type": "text", "text": f"[Called {part.tool_name} with {json.dumps(part.args, ensure_ascii=False)}]"}


def _tool_result_text(result: ToolResultPart) -> dict[str, Any]:
    label = "failed" if result.is_error else "result"
    return {"type": "text", "text": f"[{result.tool_name} {label}]\n{tool_result_content(result.result)}"}


def _file_block(part: FilePart) -> dict[str, Any]:
    if part.media_type == "application/pdf":
        return {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": "application/pdf",
                "data": base64.b64encode(part.data).decode("ascii"),
            },
            "title": part.name,
        }
    text = attachment_text(part.name, part.media_type, part.data)
    return {"type": "text", "text": text or f"[Attached file {part.name} ({part.media_type}) cannot be displayed]"}


class AnthropicClient(ModelClient):
    """Anthropic model client with rate limiting, truncation and retries."""

    provider = "anthropic"

    tokenizer: tiktoken.Encoding | None = None
    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.api_key = anthropic_api_key

        self.client = AsyncAnthropic(api_key=self.api_key)
        self.config = config or AnthropicConfig()
        self.rate_limiter = AnthropicRateLimiter(self.config.requests_per_minute, self.config.tokens_per_minute)

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: str,
        tools: list[ToolSpec] | None = None,
    ) -> ModelStream:
        request_params = await self.prepare_stream_request(model, messages, system_prompt, tools)

        logger.debug(f"Streaming from {model} with {len(request_params['messages'])} messages")
        try:
            async with self.client.messages.stream(**request_params) as stream:
                async for text in stream.text_stream:
                    yield TextDelta(text=text)
                final: AnthropicResponseMessage = await stream.get_final_message()
        except APIError as e:
            logger.error(f"Anthropic stream failed: {e}", exc_info=True)
            raise ModelCallError(model, e) from e

        self._log_usage(final)

        for block in final.content:
            if block.type == "tool_use":
                if not isinstance(block.input, dict):
                    raise ModelCallError(model, f"tool input for {block.name} is not an object")
                yield ToolDirective(tool_name=block.name, call_id=block.id, args=dict(block.input))
                # Only one tool runs per turn
                break

    async def complete(self, model: str, prompt: str, system_prompt: str) -> str:
        messages = [AnthropicMessage(role="user", content=prompt)]
        request_params = await self._prepare_request(model, messages, system_prompt, None)

        response = await self._create(model, request_params)
        return "".join(block.text for block in response.content if block.type == "text")

    async def generate_structured[T: BaseModel](
        self, model: str, prompt: str, system_prompt: str, schema: type[T]
    ) -> T:
        tool = AnthropicTool(
            name=STRUCTURED_TOOL_NAME,
            description=f"Return the {schema.__name__} object.",
            input_schema=schema.model_json_schema(),
        )
        messages = [AnthropicMessage(role="user", content=prompt)]
        request_params = await self._prepare_request(model, messages, system_prompt, [tool])
        request_params["tool_choice"] = {"type": "tool", "name": STRUCTURED_TOOL_NAME}

        response = await self._create(model, request_params)
        for block in response.content:
            if block.type == "tool_use" and block.name == STRUCTURED_TOOL_NAME:
                try:
                    return schema.model_validate(block.input)
                except ValidationError as e:
                    raise ModelCallError(model, e) from e

        raise ModelCallError(model, f"no {schema.__name__} object in response")

    async def close(self) -> None:
        await self.client.close()

    async def prepare_stream_request(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: str,
        tools: list[ToolSpec] | None,
    ) -> dict[str, Any]:
        """Build the request for a streamed turn; tool history becomes text when no tools are offered."""
        anthropic_tools = self._to_anthropic_tools(tools)
        mapped = to_anthropic_messages(messages, tool_blocks=anthropic_tools is not None)
        return await self._prepare_request(model, mapped, system_prompt, anthropic_tools)

    async def _prepare_request(
        self,
        model: str,
        messages: list[AnthropicMessage],
        system_prompt: str,
        tools: list[AnthropicTool] | None,
    ) -> dict[str, Any]:
        truncated_messages = self.truncate_conversation(messages, system_prompt, tools)

        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [msg.model_dump() for msg in truncated_messages],
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in tools]
        return request_params

    async def _create(self, model: str, request_params: dict[str, Any]) -> AnthropicResponseMessage:
        logger.debug(f"Making Anthropic API call with model: {model}")
        try:
            response = await self._request_with_retries(lambda: self.client.messages.create(**request_params))
        except APIError as e:
            raise ModelCallError(model, e) from e

        self._log_usage(response)
        return response

    async def _request_with_retries[T](self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute Anthropic API request with retry logic."""
        for attempt in range(self.config.max_retries):
            try:
                return await call()

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code == 429:
                    retry_after = 60
                    response = getattr(e, "response", None)
                    if response is not None and hasattr(response, "headers"):
                        retry_after = int(response.headers.get("retry-after", 60))

                    if retry_after < 120 and attempt < self.config.max_retries - 1:
                        await asyncio.sleep(retry_after)
                        continue

                elif status_code is not None and status_code >= 500 and attempt < self.config.max_retries - 1:
                    # Server error, retry with exponential backoff
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                raise

        raise ModelCallError(self.provider, f"Failed to complete request after {self.config.max_retries} attempts")

    def _to_anthropic_tools(self, tools: list[ToolSpec] | None) -> list[AnthropicTool] | None:
        if not tools:
            return None

        anthropic_tools = []
        for i, tool in enumerate(tools):
            # Cache control on the last tool caches all tool definitions
            cache_control = CacheControl() if i == len(tools) - 1 else None
            anthropic_tools.append(
                AnthropicTool(
                    name=tool.name,
                    description=tool.description,
                    input_schema=tool.input_schema,
                    cache_control=cache_control,
                )
            )
        return anthropic_tools

    def _log_usage(self, response: AnthropicResponseMessage) -> None:
        if not response.usage:
            return
        usage = LLMUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            cache_creation_input_tokens=response.usage.cache_creation_input_tokens or 0,
            cache_read_input_tokens=response.usage.cache_read_input_tokens or 0,
        )
        logger.info(
            f"Token usage - Input: {usage.input_tokens}, Output: {usage.output_tokens}, "
            f"Cache hit rate: {usage.cache_hit_rate:.1f}%, Stop reason: {response.stop_reason}"
        )

    def _estimate_tokens(self, messages: list[AnthropicMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting.

        Args:
            messages: Conversation messages
            system_prompt: System prompt

        Returns:
            Estimated token count
        """
        text_content = system_prompt + "".join(self._message_text(message) for message in messages)
        return self.estimate_message_tokens(text_content)

    @staticmethod
    def _message_text(message: AnthropicMessage) -> str:
        if isinstance(message.content, str):
            return message.content
        return "".join(
            item.get("text", "") or (item.get("content", "") if item.get("type") == "tool_result" else "")
            for item in message.content
        )

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Args:
            message: Message content

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def truncate_conversation(
        self, messages: list[AnthropicMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[AnthropicMessage]:
        """Truncate conversation from the beginning to fit within token limits.

        The kept window always starts with a user message that is not a bare
        tool result, so no tool_result is left without its tool_use.

        Args:
            messages: Conversation messages
            system_prompt: System prompt
            tools: Available tools

        Returns:
            Truncated message list that fits within limits
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom

        system_tokens = self.estimate_message_tokens(system_prompt)

        tool_tokens = 0
        if tools:
            tool_content = "".join(tool.name + tool.description + str(tool.input_schema) for tool in tools)
            tool_tokens = self.estimate_message_tokens(tool_content)

        available_tokens -= system_tokens + tool_tokens

        truncated_messages: list[AnthropicMessage] = []
        current_tokens = 0

        for message in reversed(messages):
            message_tokens = self.estimate_message_tokens(self._message_text(message))

            if current_tokens + message_tokens <= available_tokens:
                truncated_messages.insert(0, message)
                current_tokens += message_tokens
            else:
                break

        while truncated_messages and not self._starts_window(truncated_messages[0]):
            truncated_messages.pop(0)

        if len(truncated_messages) < len(messages):
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated_messages)} messages "
                f"to fit within {available_tokens} token limit"
            )

        return truncated_messages

    @staticmethod
    def _starts_window(message: AnthropicMessage) -> bool:
        if message.role != "user":
            return False
        if isinstance(message.content, str):
            return True
        return not any(item.get("type") == "tool_result" for item in message.content)


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
