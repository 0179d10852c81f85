"""arXiv paper search tool."""

from typing import Any

from pydantic import BaseModel, Field

from chatstream.clients.knowledge import KnowledgeClient
from chatstream.tools.base import ToolDefinition

NO_RESULTS_MESSAGE = "No relevant data found"

NARRATION_PROMPT = (
    "You summarize arXiv search results for the user. Mention the most relevant papers "
    "by title and say briefly what each contributes. If nothing was found, say so."
)


class ArxivSearchInput(BaseModel):
    """Input schema for arXiv search tool."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=300,
        description="Search terms for arXiv papers",
        examples=["diffusion models", "retrieval augmented generation"],
    )
    time: str = Field(
        "",
        pattern=r"^([1-9]\d{3}(-(0[1-9]|1[0-2]))?)?$",
        description="Only papers published from this date on, as YYYY or YYYY-MM. Empty for any date.",
        examples=["2024", "2024-06"],
    )


def _summary(args: ArxivSearchInput) -> str:
    return f"{args.query} {args.time}".strip()


def create_arxiv_tool(knowledge_client: KnowledgeClient) -> ToolDefinition:
    async def prepare(args: ArxivSearchInput) -> str:
        return _summary(args)

    async def execute(args: ArxivSearchInput, summary: str) -> dict[str, Any]:
        entries = await knowledge_client.search_arxiv(args.query, args.time)
        if not entries:
            return {"entries": [], "message": NO_RESULTS_MESSAGE}
        return {"entries": entries, "message": ""}

    def build_meta(args: ArxivSearchInput, summary: str, result: Any) -> dict[str, Any]:
        return {"query": _summary(args)}

    return ToolDefinition(
        name="arxivApiCaller",
        description=(
            "Search arXiv for research papers. Use the time filter when the user asks "
            "for recent work. Today's date is given in the system prompt."
        ),
        input_schema_class=ArxivSearchInput,
        execute=execute,
        narration_system_prompt=NARRATION_PROMPT,
        prepare=prepare,
        build_meta=build_meta,
    )
