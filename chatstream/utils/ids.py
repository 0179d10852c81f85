"""Identifier generation."""

from cuid2 import cuid_wrapper

cuid = cuid_wrapper()


def new_id() -> str:
    """Generate a new CUID for chats, turns, messages and tool calls."""
    return cuid()
