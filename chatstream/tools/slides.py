"""Slide deck generation tool."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from chatstream.errors import ModelCallError
from chatstream.services.llm import ModelRouter
from chatstream.tools.base import ToolDefinition
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

MIN_SLIDES = 2
MAX_SLIDES = 10

SLIDES_SYSTEM_PROMPT = (
    "You design clear, well structured presentation slides. Every slide has a title and "
    "a short mix of paragraphs, bullet lists, numbered lists and quotes."
)

NARRATION_PROMPT = (
    "A slide deck was generated for the user. Introduce it in two or three sentences "
    "and name the main sections. Do not repeat every slide."
)

ContentKind = Literal["paragraph", "bullet", "list", "quote"]


class ContentItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: ContentKind
    content: str | None = None
    bullet: list[str] | None = None
    list_items: list[str] | None = Field(None, alias="list")
    quote: str | None = None


class Slide(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    type: ContentKind | Literal["mixed"] = "mixed"
    content: list[ContentItem]
    content_type: Literal["mixed"] = Field("mixed", alias="contentType")


class Presentation(BaseModel):
    slides: list[Slide]


class GenerateSlidesInput(BaseModel):
    """Input schema for slide generation tool."""

    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="What the presentation is about",
        examples=["introduction to quantum computing"],
    )
    slide_count: int = Field(
        5,
        alias="slideCount",
        description=f"Number of slides, between {MIN_SLIDES} and {MAX_SLIDES}",
    )


def clamp_slide_count(count: int) -> int:
    return max(MIN_SLIDES, min(MAX_SLIDES, count))


def error_presentation(topic: str) -> Presentation:
    """Single-slide deck used when the model could not produce one."""
    return Presentation(
        slides=[
            Slide(
                title=f"Error generating slides for {topic}",
                type="paragraph",
                content=[ContentItem(type="paragraph", content="The presentation could not be generated.")],
            )
        ]
    )


def create_slides_tool(router: ModelRouter, slides_model: str) -> ToolDefinition:
    async def prepare(args: GenerateSlidesInput) -> str:
        return args.topic

    async def execute(args: GenerateSlidesInput, summary: str) -> dict[str, Any]:
        count = clamp_slide_count(args.slide_count)
        prompt = (
            f"Create a presentation about '{args.topic}' with exactly {count} slides. "
            "Start with an introduction slide and end with a conclusion slide."
        )
        client, model = router.resolve(slides_model)
        try:
            presentation = await client.generate_structured(model, prompt, SLIDES_SYSTEM_PROMPT, Presentation)
        except ModelCallError as e:
            logger.error(f"Slide generation failed for '{args.topic}': {e}")
            presentation = error_presentation(args.topic)

        logger.info(f"Generated {len(presentation.slides)} slides for '{args.topic}'")
        return {"topic": args.topic, **presentation.model_dump(mode="json", by_alias=True)}

    def build_meta(args: GenerateSlidesInput, summary: str, result: Any) -> dict[str, Any]:
        slides = result.get("slides", []) if isinstance(result, dict) else []
        return {"slides": slides}

    return ToolDefinition(
        name="generateSlides",
        description="Create a slide presentation on a topic.",
        input_schema_class=GenerateSlidesInput,
        execute=execute,
        narration_system_prompt=NARRATION_PROMPT,
        prepare=prepare,
        build_meta=build_meta,
    )
