"""Routers module - FastAPI route handlers"""

from . import agent, chat, config, context, diff, sessions

__all__ = ["agent", "chat", "config", "context", "diff", "sessions"]
