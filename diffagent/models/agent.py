"""Agent mode data models"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class AgentStatus(str, Enum):
    """Agent run state; the last four are terminal"""

    ANALYZING = "analyzing"
    THINKING = "thinking"
    TOOL_EXECUTING = "tool_executing"
    DONE = "done"
    STEP_LIMIT_REACHED = "step_limit_reached"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    ERROR = "error"


class AgentToolCall(BaseModel):
    """A tool intent extracted from model output"""

    tool: str
    args: dict[str, Any] = {}


class ChatMsg(BaseModel):
    """One entry of the running conversation sent to the model"""

    role: str  # "system", "user", "assistant"
    content: str


class AgentEvent(BaseModel):
    """Progress update for the UI"""

    step: int
    state: AgentStatus
    label: str
    status: str = "loading"  # "loading", "done", "error"
    details: str | None = None


class AgentStepRecord(BaseModel):
    """What happened in one loop iteration"""

    step: int
    thought: str | None = None
    plan: str | None = None
    tool_call: AgentToolCall | None = None
    tool_result: str | None = None


class AgentRunResult(BaseModel):
    """Terminal outcome of an agent run"""

    status: AgentStatus
    steps: int
    final_answer: str | None = None
    message: str | None = None
    records: list[AgentStepRecord] = []
    history: list[ChatMsg] = []


class AgentRunRequest(BaseModel):
    """Request to start an agent run"""

    message: str
    session_id: str | None = None
    auto_approve: bool = False


class CancelResponse(BaseModel):
    """Response to a cancellation request"""

    cancelled: bool
    message: str
