"""Web search tool."""

from typing import Any

from pydantic import BaseModel, Field

from chatstream.clients.openai import OpenAIClient
from chatstream.errors import ModelCallError
from chatstream.services.llm import ModelRouter
from chatstream.tools.base import ToolDefinition
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

REFORMULATE_PROMPT = (
    "Rewrite the user's request as a short web search query. "
    "Answer with the query only, no quotes and no explanation."
)

NARRATION_PROMPT = (
    "You answer the user's question using the web search results provided. "
    "Be concise and cite sources by title when you rely on them."
)


class SearchWebInput(BaseModel):
    """Input schema for web search tool."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="What to search the web for",
        examples=["latest AI news", "weather in Paris this weekend"],
    )


def create_web_search_tool(openai_client: OpenAIClient, router: ModelRouter, prepare_model: str) -> ToolDefinition:
    async def prepare(args: SearchWebInput) -> str:
        client, model = router.resolve(prepare_model)
        try:
            query = (await client.complete(model, args.query, REFORMULATE_PROMPT)).strip()
        except ModelCallError as e:
            logger.warning(f"Query reformulation failed, using the original query: {e}")
            return args.query
        return query or args.query

    async def execute(args: SearchWebInput, summary: str) -> dict[str, Any]:
        result = await openai_client.web_search(summary or args.query)
        logger.info(f"Web search for '{summary or args.query}' returned {len(result.sources)} sources")
        return {"text": result.text, "sources": result.sources}

    def build_meta(args: SearchWebInput, summary: str, result: Any) -> dict[str, Any]:
        return {"query": summary or args.query}

    return ToolDefinition(
        name="searchWeb",
        description=(
            "Search the web for current information. Use this for news, recent events "
            "and anything that may have changed after your training data."
        ),
        input_schema_class=SearchWebInput,
        execute=execute,
        narration_system_prompt=NARRATION_PROMPT,
        prepare=prepare,
        build_meta=build_meta,
    )
