"""LLM-related data models and types (provider-agnostic)."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass
class TextDelta:
    """A chunk of streamed model text."""

    text: str


@dataclass
class ToolDirective:
    """The model asked for a tool instead of (or after) answering in text."""

    tool_name: str
    call_id: str
    args: dict[str, Any]


ModelEvent = TextDelta | ToolDirective
ModelStream = AsyncIterator[ModelEvent]


class ToolSpec(BaseModel):
    """Tool definition as offered to a model."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class LLMUsage:
    """Token/resource usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def cache_hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        total_input = self.input_tokens + self.cache_read_input_tokens + self.cache_creation_input_tokens
        if total_input == 0:
            return 0.0
        return (self.cache_read_input_tokens / total_input) * 100
