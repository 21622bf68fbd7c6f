"""Models module - Pydantic data models"""

from .chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    CodeBlock,
    CreateSessionRequest,
    StreamEvent,
)
from .agent import (
    AgentEvent,
    AgentRunRequest,
    AgentRunResult,
    AgentStatus,
    AgentStepRecord,
    AgentToolCall,
    CancelResponse,
    ChatMsg,
)
from .context import ChunkedTextForTokenBudget, ContextWindowConfig, PinnedFileRequest
from .diff import (
    AppliedChangeBatch,
    ApplyRequest,
    ApplyResult,
    DiffLineType,
    DiffPreview,
    DiffTextRequest,
    FileChange,
    PreviewResponse,
    UndoRequest,
    UnifiedDiffFile,
    UnifiedDiffHunk,
    UnifiedDiffLine,
)

__all__ = [
    # Chat models
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatSession",
    "CodeBlock",
    "CreateSessionRequest",
    "StreamEvent",
    # Agent models
    "AgentEvent",
    "AgentRunRequest",
    "AgentRunResult",
    "AgentStatus",
    "AgentStepRecord",
    "AgentToolCall",
    "CancelResponse",
    "ChatMsg",
    # Context models
    "ChunkedTextForTokenBudget",
    "ContextWindowConfig",
    "PinnedFileRequest",
    # Diff models
    "AppliedChangeBatch",
    "ApplyRequest",
    "ApplyResult",
    "DiffLineType",
    "DiffPreview",
    "DiffTextRequest",
    "FileChange",
    "PreviewResponse",
    "UndoRequest",
    "UnifiedDiffFile",
    "UnifiedDiffHunk",
    "UnifiedDiffLine",
]
