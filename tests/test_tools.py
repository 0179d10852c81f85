"""Tests for tool definitions, the registry and model routing."""

import pytest

from chatstream.errors import ModelCallError, ToolArgumentError
from chatstream.services.llm import GEMINI_DEFAULT_MODEL, ModelRouter
from chatstream.tools.arxiv import NO_RESULTS_MESSAGE
from chatstream.tools.slides import ContentItem, Presentation, Slide, clamp_slide_count


class TestRegistry:
    """Tests for the tools registry."""

    def test_default_tools(self, registry):
        assert registry.get_tool_names() == [
            "searchWeb",
            "generateImage",
            "arxivApiCaller",
            "wikipediaSearch",
            "generateSlides",
        ]
        assert registry.has_tool("searchWeb")
        assert registry.get("teleport") is None

    def test_specs_expose_input_schemas(self, registry):
        specs = {spec.name: spec for spec in registry.tool_specs()}

        assert specs["searchWeb"].input_schema["required"] == ["query"]
        assert "slideCount" in specs["generateSlides"].input_schema["properties"]


class TestArguments:
    """Tests for tool argument validation."""

    def test_invalid_arguments_raise(self, registry):
        with pytest.raises(ToolArgumentError, match="arxivApiCaller"):
            registry.get("arxivApiCaller").parse_input({"query": "x", "time": "yesterday"})

    def test_missing_arguments_raise(self, registry):
        with pytest.raises(ToolArgumentError):
            registry.get("searchWeb").parse_input({})

    @pytest.mark.parametrize("time", ["", "2024", "2024-06"])
    def test_arxiv_time_formats(self, registry, time):
        args = registry.get("arxivApiCaller").parse_input({"query": "diffusion", "time": time})
        assert args.time == time

    @pytest.mark.parametrize("time", ["2024-13", "2024-00", "0000", "2024-6"])
    def test_arxiv_rejects_impossible_dates(self, registry, time):
        with pytest.raises(ToolArgumentError, match="arxivApiCaller"):
            registry.get("arxivApiCaller").parse_input({"query": "diffusion", "time": time})

    @pytest.mark.parametrize(("requested", "expected"), [(0, 2), (2, 2), (5, 5), (10, 10), (40, 10)])
    def test_slide_count_clamped(self, requested, expected):
        assert clamp_slide_count(requested) == expected


class TestToolExecution:
    """Tests for tool execute functions."""

    @pytest.mark.asyncio
    async def test_arxiv_no_results(self, registry, knowledge):
        tool = registry.get("arxivApiCaller")
        args = tool.parse_input({"query": "nothing"})

        result = await tool.execute(args, "nothing")

        assert result == {"entries": [], "message": NO_RESULTS_MESSAGE}
        knowledge.search_arxiv.assert_awaited_once_with("nothing", "")

    @pytest.mark.asyncio
    async def test_web_search_uses_reformulated_query(self, registry, model_client, openai_tools):
        tool = registry.get("searchWeb")
        args = tool.parse_input({"query": "whats new w/ AI??"})
        model_client.completions.append("  latest AI news  ")

        summary = await tool.prepare(args)
        result = await tool.execute(args, summary)

        assert summary == "latest AI news"
        assert model_client.complete_prompts == ["whats new w/ AI??"]
        openai_tools.web_search.assert_awaited_once_with("latest AI news")
        assert result["sources"][0]["title"] == "AI weekly"
        assert tool.build_meta(args, summary, result) == {"query": "latest AI news"}

    @pytest.mark.asyncio
    async def test_slides_generated(self, registry, model_client):
        tool = registry.get("generateSlides")
        args = tool.parse_input({"topic": "Computing", "slideCount": 2})
        model_client.structured.append(
            Presentation(
                slides=[
                    Slide(title="Intro", content=[ContentItem(type="paragraph", content="Hi")]),
                    Slide(title="End", content=[ContentItem(type="bullet", bullet=["a", "b"])]),
                ]
            )
        )

        result = await tool.execute(args, "Computing")

        assert result["topic"] == "Computing"
        assert [s["title"] for s in result["slides"]] == ["Intro", "End"]
        assert result["slides"][0]["contentType"] == "mixed"
        assert tool.build_meta(args, "Computing", result) == {"slides": result["slides"]}

    @pytest.mark.asyncio
    async def test_slides_fall_back_to_error_slide(self, registry, model_client):
        tool = registry.get("generateSlides")
        model_client.structured.append(ModelCallError("gpt-4o", "overloaded"))

        result = await tool.execute(tool.parse_input({"topic": "Computing"}), "Computing")

        assert len(result["slides"]) == 1
        assert result["slides"][0]["title"] == "Error generating slides for Computing"

    @pytest.mark.asyncio
    async def test_image_meta(self, registry):
        tool = registry.get("generateImage")
        args = tool.parse_input({"prompt": "a fox"})

        url = await tool.execute(args, "")

        assert tool.build_meta(args, "", url) == {"image_url": "https://images.example.com/fox.png"}


class TestModelRouter:
    """Tests for routing model identifiers to providers."""

    def test_routes_by_prefix(self):
        openai, anthropic = object(), object()
        router = ModelRouter(openai_client=openai, anthropic_client=anthropic)

        assert router.resolve("claude-sonnet-4-5") == (anthropic, "claude-sonnet-4-5")
        assert router.resolve("gpt-4o-mini") == (openai, "gpt-4o-mini")
        assert router.resolve("o3-mini") == (openai, "o3-mini")
        assert router.resolve("llama-3") == (openai, "gpt-4o")

    def test_routes_groq_and_gemini(self):
        openai, groq, gemini = object(), object(), object()
        router = ModelRouter(openai_client=openai, groq_client=groq, gemini_client=gemini)

        assert router.resolve("llama3-70b-8192") == (groq, "llama3-70b-8192")
        assert router.resolve("mixtral-8x7b-32768") == (groq, "mixtral-8x7b-32768")
        assert router.resolve("gemini") == (gemini, GEMINI_DEFAULT_MODEL)
        assert router.resolve("gemini-1.5-pro") == (gemini, "gemini-1.5-pro")
        assert router.resolve("llama3-8b") == (openai, "gpt-4o")
