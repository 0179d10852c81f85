"""Conversational assistant backend with tool pipelines and replayable chat views."""

__version__ = "0.1.0"
