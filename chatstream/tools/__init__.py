"""Tools for the chat assistant."""

from chatstream.tools.base import ToolDefinition
from chatstream.tools.registry import ToolsRegistry, create_default_registry, get_tools_registry

__all__ = ["ToolDefinition", "ToolsRegistry", "create_default_registry", "get_tools_registry"]
