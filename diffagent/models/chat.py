"""Chat mode data models"""

from __future__ import annotations

import time

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request for chat message"""

    message: str
    session_id: str | None = None


class CodeBlock(BaseModel):
    """Extracted code block from response"""

    language: str
    code: str


class ChatResponse(BaseModel):
    """Response for chat message"""

    session_id: str
    content: str
    code_blocks: list[CodeBlock] = []
    metadata: dict = {}


class StreamEvent(BaseModel):
    """SSE stream event"""

    type: str  # "content", "code_block", "agent_event", "done", "error"
    chunk: str | None = None
    code_block: CodeBlock | None = None
    metadata: dict | None = None
    done: bool = False
    error: str | None = None


class ChatMessage(BaseModel):
    """A persisted chat message"""

    role: str
    content: str
    timestamp: float = Field(default_factory=time.time)


class ChatSession(BaseModel):
    """A persisted conversation"""

    id: str
    title: str = "New Chat"
    messages: list[ChatMessage] = []
    last_modified: float = Field(default_factory=time.time)


class CreateSessionRequest(BaseModel):
    """Request to create a session"""

    title: str = "New Chat"
