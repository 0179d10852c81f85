"""Wikipedia lookup tool."""

from typing import Any

from pydantic import BaseModel, Field

from chatstream.clients.knowledge import KnowledgeClient
from chatstream.tools.base import ToolDefinition

NARRATION_PROMPT = (
    "You answer the user's question from the Wikipedia introduction provided. "
    "Stay close to the article and say so if it does not cover the question."
)


class WikipediaSearchInput(BaseModel):
    """Input schema for Wikipedia search tool."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=300,
        description="Topic to look up on Wikipedia",
        examples=["Alan Turing", "photosynthesis"],
    )


def create_wikipedia_tool(knowledge_client: KnowledgeClient) -> ToolDefinition:
    async def prepare(args: WikipediaSearchInput) -> str:
        return args.query

    async def execute(args: WikipediaSearchInput, summary: str) -> dict[str, Any]:
        return await knowledge_client.search_wikipedia(args.query)

    def build_meta(args: WikipediaSearchInput, summary: str, result: Any) -> dict[str, Any]:
        return {"query": args.query}

    return ToolDefinition(
        name="wikipediaSearch",
        description="Look up a topic on Wikipedia and read the introduction of the best matching article.",
        input_schema_class=WikipediaSearchInput,
        execute=execute,
        narration_system_prompt=NARRATION_PROMPT,
        prepare=prepare,
        build_meta=build_meta,
    )
