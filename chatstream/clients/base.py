"""Provider-neutral model client interface."""

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import BaseModel

from chatstream.models.llm import ModelStream, ToolSpec
from chatstream.models.messages import Message


class ModelClient(ABC):
    """Abstract base class for language model providers.

    Implementations own everything provider-specific: mapping the conversation
    log onto the provider's message format, streaming, retries and rate limits.
    Provider failures must surface as ``ModelCallError``.
    """

    provider: str

    @abstractmethod
    def stream(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: str,
        tools: list[ToolSpec] | None = None,
    ) -> ModelStream:
        """Stream a response to the conversation.

        Yields ``TextDelta`` chunks in order. If the model requests a tool the
        stream ends with a single ``ToolDirective``.
        """

    @abstractmethod
    async def complete(self, model: str, prompt: str, system_prompt: str) -> str:
        """Answer a single prompt with text, no tools."""

    @abstractmethod
    async def generate_structured[T: BaseModel](
        self, model: str, prompt: str, system_prompt: str, schema: type[T]
    ) -> T:
        """Answer a single prompt with an object validated against ``schema``."""

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""

    def validate_message_tokens(self, message: str) -> None:
        """Raise ValueError if a user message is too long for the provider.

        Providers without a per-message limit accept everything.
        """


def tool_result_content(result: object) -> str:
    """Serialize a persisted tool result for a provider's tool-result slot."""
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def attachment_text(name: str, media_type: str, data: bytes) -> str | None:
    """Inline text-like attachments; return None for binary ones."""
    if not media_type.startswith("text/") and media_type not in ("application/json", "application/xml"):
        return None
    return f"Attached file {name}:\n{data.decode('utf-8', errors='replace')}\nEnd of {name}."
