"""Diff-related data models"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DiffLineType(str, Enum):
    """Kind of a line inside a hunk body"""

    CONTEXT = "context"
    ADD = "add"
    REMOVE = "remove"


class UnifiedDiffLine(BaseModel):
    """A single typed line of a hunk (marker stripped)"""

    model_config = ConfigDict(frozen=True)

    type: DiffLineType
    content: str


class UnifiedDiffHunk(BaseModel):
    """A single @@ hunk; counts are the ones declared in the header"""

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: list[UnifiedDiffLine] = []


class UnifiedDiffFile(BaseModel):
    """All hunks of a diff targeting one file"""

    old_path: str
    new_path: str
    is_new_file: bool = False
    is_deleted_file: bool = False
    hunks: list[UnifiedDiffHunk] = []
    new_file_has_trailing_newline: bool | None = None

    @property
    def display_path(self) -> str:
        return self.new_path or self.old_path


class FileChange(BaseModel):
    """Staged before/after state of one workspace file"""

    absolute_path: str
    relative_path: str
    before_content: str
    after_content: str
    existed_before: bool
    existed_after: bool


class AppliedChangeBatch(BaseModel):
    """A committed set of file changes, kept for exact-content undo"""

    title: str
    created_at: float
    files: list[FileChange]


class DiffPreview(BaseModel):
    """Before/after pair rendered for operator review"""

    relative_path: str
    original_key: str
    modified_key: str
    unified_diff: str


class ApplyResult(BaseModel):
    """Outcome of a preview/apply cycle"""

    applied: bool
    changed_files: int
    message: str


# ========== API payloads ==========


class DiffTextRequest(BaseModel):
    """Request carrying raw (optionally fenced) diff text"""

    diff_content: str = Field(..., alias="diffContent")
    title: str = "Patch"

    model_config = ConfigDict(populate_by_name=True)


class PreviewResponse(BaseModel):
    """Staged change set waiting for an apply decision"""

    preview_id: str
    changes: list[FileChange]
    previews: list[DiffPreview]


class ApplyRequest(BaseModel):
    """Request to apply a staged change set"""

    preview_id: str
    force: bool = False


class UndoRequest(BaseModel):
    """Request to undo the latest applied batch"""

    force: bool = False
