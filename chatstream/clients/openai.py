"""OpenAI API client: chat models, web search and image generation."""

import base64
import json
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ValidationError

from chatstream.clients.base import ModelClient, attachment_text, tool_result_content
from chatstream.errors import ModelCallError, ToolArgumentError
from chatstream.models.llm import ModelStream, TextDelta, ToolDirective, ToolSpec
from chatstream.models.messages import (
    AssistantMessage,
    AssistantTextPart,
    FilePart,
    ImagePart,
    Message,
    TextPart,
    ToolCallPart,
    ToolMessage,
    UserMessage,
)
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

STRUCTURED_FUNCTION_NAME = "emit_result"

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


@dataclass
class OpenAIConfig:
    """Configuration for OpenAI API client."""

    max_retries: int = 3
    timeout: float = 120.0
    search_model: str = "gpt-4o-mini"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"


@dataclass
class WebSearchResult:
    text: str
    sources: list[dict[str, str]] = field(default_factory=list)


def to_openai_messages(messages: Sequence[Message], system_prompt: str) -> list[dict[str, Any]]:
    """Map the conversation log onto Chat Completions messages."""
    mapped: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    for message in messages:
        if isinstance(message, UserMessage):
            content = [block for block in (_user_block(part) for part in message.parts) if block]
            if content:
                mapped.append({"role": "user", "content": content})

        elif isinstance(message, AssistantMessage):
            if isinstance(message.content, str):
                mapped.append({"role": "assistant", "content": message.content})
                continue

            text = "".join(part.text for part in message.content if isinstance(part, AssistantTextPart))
            tool_calls = [
                {
                    "id": part.call_id,
                    "type": "function",
                    "function": {"name": part.tool_name, "arguments": json.dumps(part.args)},
                }
                for part in message.content
                if isinstance(part, ToolCallPart)
            ]
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            if text or tool_calls:
                mapped.append(entry)

        elif isinstance(message, ToolMessage):
            for result in message.results:
                mapped.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.call_id,
                        "content": tool_result_content(result.result),
                    }
                )

    return mapped


def _user_block(part) -> dict[str, Any] | None:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text} if part.text else None
    if isinstance(part, ImagePart):
        encoded = base64.b64encode(part.data).decode("ascii")
        return {"type": "image_url", "image_url": {"url": f"data:{part.media_type};base64,{encoded}"}}
    if isinstance(part, FilePart):
        if part.media_type == "application/pdf":
            encoded = base64.b64encode(part.data).decode("ascii")
            return {
                "type": "file",
                "file": {"filename": part.name, "file_data": f"data:application/pdf;base64,{encoded}"},
            }
        text = attachment_text(part.name, part.media_type, part.data)
        return {"type": "text", "text": text or f"[Attached file {part.name} ({part.media_type}) cannot be displayed]"}
    return None


class OpenAIClient(ModelClient):
    """OpenAI model client plus the hosted tools the assistant relies on.

    Also serves providers with an OpenAI-compatible Chat Completions API
    (Groq, Gemini) through ``base_url``. Hosted search and images are OpenAI only.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        config: OpenAIConfig | None = None,
        base_url: str | None = None,
        provider: str = "openai",
        api_key_env: str = "OPENAI_API_KEY",
    ):
        """Initialize OpenAI client.

        Args:
            api_key: API key (defaults to the ``api_key_env`` env var)
            config: Client configuration
            base_url: Endpoint of an OpenAI-compatible provider; None for OpenAI
            provider: Provider name used in logs
            api_key_env: Environment variable holding the key
        """
        openai_api_key = api_key or os.getenv(api_key_env)
        if not openai_api_key:
            raise ValueError(f"{api_key_env} environment variable is required")

        self.provider = provider
        self.config = config or OpenAIConfig()
        self.client = AsyncOpenAI(
            api_key=openai_api_key,
            base_url=base_url,
            max_retries=self.config.max_retries,
            timeout=self.config.timeout,
        )

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: str,
        tools: list[ToolSpec] | None = None,
    ) -> ModelStream:
        request_params: dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(messages, system_prompt),
            "stream": True,
        }
        if tools:
            request_params["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.input_schema},
                }
                for t in tools
            ]

        logger.debug(f"Streaming from {model} with {len(request_params['messages'])} messages")

        # Tool call fragments arrive keyed by index
        calls: dict[int, dict[str, str]] = {}
        try:
            stream = await self.client.chat.completions.create(**request_params)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield TextDelta(text=delta.content)
                for fragment in delta.tool_calls or []:
                    entry = calls.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                    if fragment.id:
                        entry["id"] = fragment.id
                    if fragment.function:
                        entry["name"] += fragment.function.name or ""
                        entry["arguments"] += fragment.function.arguments or ""
        except APIError as e:
            logger.error(f"{self.provider} stream failed: {e}", exc_info=True)
            raise ModelCallError(model, e) from e

        if not calls:
            return

        # Only one tool runs per turn
        call = calls[min(calls)]
        try:
            args = json.loads(call["arguments"] or "{}")
        except json.JSONDecodeError as e:
            raise ToolArgumentError(call["name"], "arguments are not valid JSON") from e
        if not isinstance(args, dict):
            raise ToolArgumentError(call["name"], "arguments are not an object")

        yield ToolDirective(tool_name=call["name"], call_id=call["id"], args=args)

    async def complete(self, model: str, prompt: str, system_prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        # Reasoning models such as o1 reject system messages
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        try:
            completion = await self.client.chat.completions.create(model=model, messages=messages)
        except APIError as e:
            raise ModelCallError(model, e) from e

        return completion.choices[0].message.content or ""

    async def generate_structured[T: BaseModel](
        self, model: str, prompt: str, system_prompt: str, schema: type[T]
    ) -> T:
        try:
            completion = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": STRUCTURED_FUNCTION_NAME,
                            "description": f"Return the {schema.__name__} object.",
                            "parameters": schema.model_json_schema(),
                        },
                    }
                ],
                tool_choice={"type": "function", "function": {"name": STRUCTURED_FUNCTION_NAME}},
            )
        except APIError as e:
            raise ModelCallError(model, e) from e

        tool_calls = completion.choices[0].message.tool_calls or []
        if not tool_calls:
            raise ModelCallError(model, f"no {schema.__name__} object in response")

        try:
            return schema.model_validate_json(tool_calls[0].function.arguments)
        except ValidationError as e:
            raise ModelCallError(model, e) from e

    async def web_search(self, query: str) -> WebSearchResult:
        """Answer a query with the hosted web search tool, keeping cited sources."""
        response = await self.client.responses.create(
            model=self.config.search_model,
            input=query,
            tools=[{"type": "web_search_preview"}],
        )

        sources: list[dict[str, str]] = []
        seen: set[str] = set()
        for item in response.output:
            if item.type != "message":
                continue
            for content in item.content:
                if content.type != "output_text":
                    continue
                for annotation in content.annotations or []:
                    if annotation.type == "url_citation" and annotation.url not in seen:
                        seen.add(annotation.url)
                        sources.append({"url": annotation.url, "title": annotation.title})

        return WebSearchResult(text=response.output_text or "", sources=sources)

    async def generate_image(self, prompt: str) -> str:
        """Generate one image and return its URL."""
        response = await self.client.images.generate(
            model=self.config.image_model,
            prompt=prompt,
            n=1,
            size=self.config.image_size,
        )
        if not response.data or not response.data[0].url:
            raise ValueError("Image generation returned no image")
        return response.data[0].url

    async def close(self) -> None:
        await self.client.close()


_openai_client: OpenAIClient | None = None


def get_openai_client() -> OpenAIClient:
    """Get or create OpenAI client instance."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAIClient()
    return _openai_client


async def close_openai_client() -> None:
    """Close the shared OpenAI client if it was created."""
    global _openai_client
    if _openai_client is not None:
        await _openai_client.close()
        _openai_client = None


def create_groq_client() -> OpenAIClient:
    return OpenAIClient(base_url=GROQ_BASE_URL, provider="groq", api_key_env="GROQ_API_KEY")


def create_gemini_client() -> OpenAIClient:
    return OpenAIClient(base_url=GEMINI_BASE_URL, provider="gemini", api_key_env="GEMINI_API_KEY")
