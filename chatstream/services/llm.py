"""Routing of model identifiers to provider clients."""

from chatstream.clients.anthropic import get_anthropic_client
from chatstream.clients.base import ModelClient
from chatstream.clients.openai import create_gemini_client, create_groq_client, get_openai_client
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

FALLBACK_MODEL = "gpt-4o"
GEMINI_DEFAULT_MODEL = "gemini-2.0-flash"

OPENAI_PREFIXES = ("gpt", "o1", "o3", "o4")
ANTHROPIC_PREFIXES = ("claude",)
GEMINI_PREFIXES = ("gemini",)
GROQ_MODELS = frozenset({"llama3-70b-8192", "gemma-7b-it", "mixtral-8x7b-32768"})


class ModelRouter:
    """Picks the provider client for a model identifier.

    ``claude*`` goes to Anthropic, ``gpt*`` and the ``o`` reasoning series go
    to OpenAI, the hosted Groq models to Groq and ``gemini*`` to Google (bare
    ``gemini`` means the default Gemini model). Anything else is answered by
    the fallback OpenAI model. Clients are created on first use so a
    deployment only needs keys for the providers it actually calls.
    """

    def __init__(
        self,
        openai_client: ModelClient | None = None,
        anthropic_client: ModelClient | None = None,
        groq_client: ModelClient | None = None,
        gemini_client: ModelClient | None = None,
        fallback_model: str = FALLBACK_MODEL,
    ):
        self._openai_client = openai_client
        self._anthropic_client = anthropic_client
        self._groq_client = groq_client
        self._gemini_client = gemini_client
        self.fallback_model = fallback_model

    @property
    def openai(self) -> ModelClient:
        if self._openai_client is None:
            self._openai_client = get_openai_client()
        return self._openai_client

    @property
    def anthropic(self) -> ModelClient:
        if self._anthropic_client is None:
            self._anthropic_client = get_anthropic_client()
        return self._anthropic_client

    @property
    def groq(self) -> ModelClient:
        if self._groq_client is None:
            self._groq_client = create_groq_client()
        return self._groq_client

    @property
    def gemini(self) -> ModelClient:
        if self._gemini_client is None:
            self._gemini_client = create_gemini_client()
        return self._gemini_client

    def resolve(self, model_id: str) -> tuple[ModelClient, str]:
        """Return ``(client, model)`` for a requested model identifier."""
        if model_id.startswith(ANTHROPIC_PREFIXES):
            return self.anthropic, model_id
        if model_id.startswith(OPENAI_PREFIXES):
            return self.openai, model_id
        if model_id in GROQ_MODELS:
            return self.groq, model_id
        if model_id.startswith(GEMINI_PREFIXES):
            return self.gemini, GEMINI_DEFAULT_MODEL if model_id == "gemini" else model_id

        logger.warning(f"Unknown model '{model_id}', falling back to {self.fallback_model}")
        return self.openai, self.fallback_model

    async def close(self) -> None:
        for client in (self._openai_client, self._anthropic_client, self._groq_client, self._gemini_client):
            if client is not None:
                await client.close()


_model_router: ModelRouter | None = None


def get_model_router() -> ModelRouter:
    """Get or create model router instance."""
    global _model_router
    if _model_router is None:
        _model_router = ModelRouter()
    return _model_router


async def close_model_router() -> None:
    """Close the provider clients of the shared router if it was created."""
    global _model_router
    if _model_router is not None:
        await _model_router.close()
        _model_router = None
