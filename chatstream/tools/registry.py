"""Tools registry for managing assistant tools."""

from chatstream.clients.knowledge import KnowledgeClient, get_knowledge_client
from chatstream.clients.openai import OpenAIClient, get_openai_client
from chatstream.config import Settings, get_settings
from chatstream.models.llm import ToolSpec
from chatstream.services.llm import ModelRouter, get_model_router
from chatstream.tools.arxiv import create_arxiv_tool
from chatstream.tools.base import ToolDefinition
from chatstream.tools.generate_image import create_generate_image_tool
from chatstream.tools.slides import create_slides_tool
from chatstream.tools.web_search import create_web_search_tool
from chatstream.tools.wikipedia import create_wikipedia_tool


class ToolsRegistry:
    """Static, name-keyed table of the tools the assistant may call."""

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def tool_specs(self) -> list[ToolSpec]:
        """Specs of every registered tool, as offered to a model."""
        return [tool.to_spec() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools


def create_default_registry(
    openai_client: OpenAIClient,
    knowledge_client: KnowledgeClient,
    router: ModelRouter,
    settings: Settings,
) -> ToolsRegistry:
    """Registry with the built-in tool set."""
    return ToolsRegistry(
        [
            create_web_search_tool(openai_client, router, settings.prepare_model),
            create_generate_image_tool(openai_client),
            create_arxiv_tool(knowledge_client),
            create_wikipedia_tool(knowledge_client),
            create_slides_tool(router, settings.slides_model),
        ]
    )


_tools_registry: ToolsRegistry | None = None


def get_tools_registry() -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry
    if _tools_registry is None:
        _tools_registry = create_default_registry(
            get_openai_client(), get_knowledge_client(), get_model_router(), get_settings()
        )
    return _tools_registry
