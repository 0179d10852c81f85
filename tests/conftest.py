"""Shared fixtures: a scripted model client and fully wired services."""

from collections.abc import Sequence
from dataclasses import dataclass
from unittest.mock import AsyncMock, Mock

import pytest
from pydantic import BaseModel

from chatstream.clients.base import ModelClient
from chatstream.clients.knowledge import KnowledgeClient
from chatstream.clients.openai import OpenAIClient, WebSearchResult
from chatstream.config import Settings
from chatstream.models.llm import ModelEvent, ModelStream, ToolSpec
from chatstream.models.messages import Message
from chatstream.services.chat_store import InMemoryChatStore
from chatstream.services.llm import ModelRouter
from chatstream.services.orchestrator import TurnOrchestrator
from chatstream.tools.registry import create_default_registry


@dataclass
class StreamCall:
    model: str
    messages: tuple[Message, ...]
    system_prompt: str
    tools: list[ToolSpec] | None


class ScriptedModelClient(ModelClient):
    """Model client that replays canned event scripts, one per ``stream`` call.

    A script entry that is an exception is raised at that point of the stream.
    """

    provider = "scripted"

    def __init__(self):
        self.scripts: list[list[ModelEvent | Exception]] = []
        self.completions: list[str | Exception] = []
        self.structured: list[BaseModel | Exception] = []
        self.calls: list[StreamCall] = []
        self.complete_prompts: list[str] = []

    def script(self, *events: ModelEvent | Exception) -> None:
        self.scripts.append(list(events))

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: str,
        tools: list[ToolSpec] | None = None,
    ) -> ModelStream:
        self.calls.append(StreamCall(model, tuple(messages), system_prompt, tools))
        for event in self.scripts.pop(0):
            if isinstance(event, Exception):
                raise event
            yield event

    async def complete(self, model: str, prompt: str, system_prompt: str) -> str:
        self.complete_prompts.append(prompt)
        answer = self.completions.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def generate_structured(self, model, prompt, system_prompt, schema):
        answer = self.structured.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return schema.model_validate(answer.model_dump(by_alias=True))

    async def close(self) -> None:
        pass


@pytest.fixture
def model_client():
    return ScriptedModelClient()


@pytest.fixture
def router(model_client):
    return ModelRouter(openai_client=model_client, anthropic_client=model_client)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        default_model="gpt-4o",
        prepare_model="gpt-4o-mini",
        slides_model="gpt-4o",
        store="memory",
        data_dir=tmp_path,
        max_message_chars=2000,
    )


@pytest.fixture
def openai_tools():
    """OpenAI client stand-in for the hosted tools (search and images)."""
    client = Mock(spec=OpenAIClient)
    client.web_search = AsyncMock(
        return_value=WebSearchResult(
            text="Several labs released new models this week.",
            sources=[{"url": "https://news.example.com/ai", "title": "AI weekly"}],
        )
    )
    client.generate_image = AsyncMock(return_value="https://images.example.com/fox.png")
    return client


@pytest.fixture
def knowledge():
    client = Mock(spec=KnowledgeClient)
    client.search_arxiv = AsyncMock(return_value=[])
    client.search_wikipedia = AsyncMock(
        return_value={"query": "Alan Turing", "title": "Alan Turing", "content": "English mathematician."}
    )
    return client


@pytest.fixture
def registry(openai_tools, knowledge, router, settings):
    return create_default_registry(openai_tools, knowledge, router, settings)


@pytest.fixture
def store():
    return InMemoryChatStore()


@pytest.fixture
def orchestrator(store, registry, router, settings):
    return TurnOrchestrator(store, registry, router, settings)
