"""Display table for tool output.

This table is the only place that knows how a tool's log entries turn into
view payloads. The live pipeline and replay both call ``render_tool_part`` and
``render_tool_result``, which is what keeps a live turn and its replay equal.
Builders are pure and must not touch the network.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from chatstream.models.messages import AssistantTextPart, ToolResultPart
from chatstream.models.views import ToolResultView, UnknownView, ViewNode
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

ResultBuilder = Callable[[Any], dict[str, Any]]
NarrationBuilder = Callable[[str, Any], dict[str, Any]]


@dataclass(frozen=True)
class ToolViewBuilder:
    from_result: ResultBuilder
    from_narration: NarrationBuilder


def _field(value: Any, key: str, default: Any) -> Any:
    return value.get(key, default) if isinstance(value, dict) else default


def _search_result(result: Any) -> dict[str, Any]:
    return {"sources": list(_field(result, "sources", []))}


def _image_result(result: Any) -> dict[str, Any]:
    return {"image_url": result if isinstance(result, str) else ""}


def _arxiv_result(result: Any) -> dict[str, Any]:
    papers = [
        {
            "title": paper.get("title", ""),
            "published": paper.get("published", ""),
            "link": (paper.get("links") or [paper.get("id", "")])[0],
        }
        for paper in _field(result, "entries", [])
        if isinstance(paper, dict)
    ]
    return {"papers": papers, "message": _field(result, "message", "")}


def _wikipedia_result(result: Any) -> dict[str, Any]:
    return {"title": _field(result, "title", ""), "query": _field(result, "query", "")}


def _slides_result(result: Any) -> dict[str, Any]:
    slides = _field(result, "slides", [])
    return {
        "topic": _field(result, "topic", ""),
        "slide_titles": [slide.get("title", "") for slide in slides if isinstance(slide, dict)],
    }


def _query_narration(text: str, meta: Any) -> dict[str, Any]:
    return {"text": text, "query": _field(meta, "query", "")}


def _image_narration(text: str, meta: Any) -> dict[str, Any]:
    return {"text": text, "image_url": _field(meta, "image_url", "")}


def _slides_narration(text: str, meta: Any) -> dict[str, Any]:
    return {"text": text, "slides": list(_field(meta, "slides", []))}


TOOL_VIEWS: dict[str, ToolViewBuilder] = {
    "searchWeb": ToolViewBuilder(from_result=_search_result, from_narration=_query_narration),
    "generateImage": ToolViewBuilder(from_result=_image_result, from_narration=_image_narration),
    "arxivApiCaller": ToolViewBuilder(from_result=_arxiv_result, from_narration=_query_narration),
    "wikipediaSearch": ToolViewBuilder(from_result=_wikipedia_result, from_narration=_query_narration),
    "generateSlides": ToolViewBuilder(from_result=_slides_result, from_narration=_slides_narration),
}


def render_tool_result(view_id: str, part: ToolResultPart) -> ViewNode:
    """View of a persisted tool result."""
    builder = TOOL_VIEWS.get(part.tool_name)
    if builder is None:
        return UnknownView(id=view_id, reason=f"unknown tool {part.tool_name}")

    if part.is_error:
        payload = {"error": True, "message": _field(part.result, "message", "The tool failed.")}
    else:
        try:
            payload = builder.from_result(part.result)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed {part.tool_name} result in log: {e}")
            return UnknownView(id=view_id, reason=f"malformed {part.tool_name} result")

    return ToolResultView(id=view_id, tool_name=part.tool_name, source="result", payload=payload)


def render_tool_part(view_id: str, part: AssistantTextPart, streaming: bool = False) -> ViewNode:
    """View of a narration part (``AssistantTextPart`` with a ``tool_name``)."""
    builder = TOOL_VIEWS.get(part.tool_name or "")
    if builder is None:
        return UnknownView(id=view_id, reason=f"unknown tool {part.tool_name}")

    try:
        payload = builder.from_narration(part.text, part.meta)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Malformed {part.tool_name} narration meta in log: {e}")
        return UnknownView(id=view_id, reason=f"malformed {part.tool_name} narration")

    if _field(part.meta, "error", False):
        payload["error"] = True

    return ToolResultView(
        id=view_id,
        tool_name=part.tool_name or "",
        source="narration",
        payload=payload,
        streaming=streaming,
    )
