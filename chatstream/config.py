"""Service configuration read from the environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class Settings:
    """Top-level settings for the chat engine."""

    default_model: str = field(default_factory=lambda: os.getenv("CHATSTREAM_DEFAULT_MODEL", "gpt-4o"))

    # Small, cheap model used by tool prepare steps (query reformulation)
    prepare_model: str = field(default_factory=lambda: os.getenv("CHATSTREAM_PREPARE_MODEL", "gpt-4o-mini"))

    # Model for structured slide decks
    slides_model: str = field(default_factory=lambda: os.getenv("CHATSTREAM_SLIDES_MODEL", "gpt-4o"))

    store: Literal["memory", "json"] = field(
        default_factory=lambda: "json" if os.getenv("CHATSTREAM_STORE", "memory") == "json" else "memory"
    )
    data_dir: Path = field(default_factory=lambda: Path(os.getenv("CHATSTREAM_DATA_DIR", "./data/chats")))

    max_message_chars: int = field(default_factory=lambda: _env_int("CHATSTREAM_MAX_MESSAGE_CHARS", 16000))

    system_prompt: str = "You are a helpful assistant"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
