"""Context window data models"""

from __future__ import annotations

from pydantic import BaseModel


class ChunkedTextForTokenBudget(BaseModel):
    """Prefix of a text's chunks that fits a token budget"""

    chunks: list[str]
    used_tokens: int
    estimated_total_tokens: int
    total_chunk_count: int
    included_chunk_count: int
    omitted_chunk_count: int
    partial_chunk_included: bool
    truncated: bool


class ContextWindowConfig(BaseModel):
    """Budgets derived from the model's context size"""

    chunk_size_chars: int
    context_token_budget: int
    read_token_budget: int


class PinnedFileRequest(BaseModel):
    """Request to pin or unpin a workspace file"""

    file_path: str
