"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from chatstream.errors import ToolArgumentError
from chatstream.models.llm import ToolSpec

# (args) -> cheap summary shown while the tool runs
ToolPrepare = Callable[[Any], Awaitable[str]]
# (args, summary) -> JSON-serializable result
ToolExecute = Callable[[Any, str], Awaitable[Any]]
# (args, summary, result) -> meta stored on the narration part
ToolMeta = Callable[[Any, str, Any], dict[str, Any]]


def _no_meta(args: Any, summary: str, result: Any) -> dict[str, Any]:
    return {}


@dataclass
class ToolDefinition:
    """Definition of a tool available to the assistant: data plus functions."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    execute: ToolExecute
    narration_system_prompt: str
    prepare: ToolPrepare | None = None
    build_meta: ToolMeta = field(default=_no_meta)

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input.

        Raises:
            ToolArgumentError: If the input fails the tool's schema
        """
        try:
            return self.input_schema_class.model_validate(raw_input)
        except ValidationError as e:
            raise ToolArgumentError(self.name, str(e)) from e

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.get_json_schema())
