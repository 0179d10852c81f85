"""Image generation tool."""

from typing import Any

from pydantic import BaseModel, Field

from chatstream.clients.openai import OpenAIClient
from chatstream.tools.base import ToolDefinition

NARRATION_PROMPT = (
    "An image was generated for the user's request. Describe in one or two sentences "
    "what was created. Do not include the image URL."
)


class GenerateImageInput(BaseModel):
    """Input schema for image generation tool."""

    prompt: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="Detailed description of the image to generate",
        examples=["a watercolor fox sleeping under a maple tree"],
    )


def create_generate_image_tool(openai_client: OpenAIClient) -> ToolDefinition:
    async def execute(args: GenerateImageInput, summary: str) -> str:
        return await openai_client.generate_image(args.prompt)

    def build_meta(args: GenerateImageInput, summary: str, result: Any) -> dict[str, Any]:
        return {"image_url": result if isinstance(result, str) else ""}

    return ToolDefinition(
        name="generateImage",
        description="Generate an image from a text description.",
        input_schema_class=GenerateImageInput,
        execute=execute,
        narration_system_prompt=NARRATION_PROMPT,
        build_meta=build_meta,
    )
