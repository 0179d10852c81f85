"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatstream import __version__
from chatstream.api.endpoints import router
from chatstream.clients.knowledge import close_knowledge_client
from chatstream.clients.openai import close_openai_client
from chatstream.services.llm import close_model_router
from chatstream.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting chatstream {__version__}")
    yield
    logger.info("Shutting down chatstream")
    await close_model_router()
    await close_openai_client()
    await close_knowledge_client()


# Create FastAPI application
app = FastAPI(
    title="chatstream",
    description=(
        "A conversational assistant service that streams model answers and tool results "
        "and replays stored chats from their conversation log."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Chats",
            "description": (
                "Create chats, submit turns (whole or streamed as NDJSON) and replay stored chats. "
                "The caller is identified by the X-User-Id header."
            ),
        },
        {
            "name": "Generate",
            "description": "Single prompt completions outside any chat.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("chatstream.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
