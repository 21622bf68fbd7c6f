"""Diff API endpoints - parse, preview, apply and undo unified diffs"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from ..models.diff import (
    ApplyRequest,
    ApplyResult,
    DiffTextRequest,
    PreviewResponse,
    UndoRequest,
    UnifiedDiffFile,
)
from ..services.config_manager import ConfigManager
from ..services.errors import (
    ConflictError,
    DiffAgentError,
    ParseError,
    SecurityError,
    StateError,
    UnsupportedOperationError,
)
from ..services.review import AutoReviewer
from ..services.unified_diff import parse_unified_diff
from ..services.workspace_session import get_workspace_session

router = APIRouter()

ERROR_STATUS = {
    ParseError: 400,
    UnsupportedOperationError: 400,
    SecurityError: 400,
    ConflictError: 409,
    StateError: 409,
}


def to_http_exception(error: DiffAgentError) -> HTTPException:
    """Map a domain error onto an HTTP status"""
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(error, kind)), 500)
    return HTTPException(status_code=status, detail=str(error))


@router.post("/parse", response_model=list[UnifiedDiffFile])
async def parse_diff(request: DiffTextRequest) -> list[UnifiedDiffFile]:
    """Parse diff text into per-file patches without touching the workspace"""
    try:
        return parse_unified_diff(request.diff_content)
    except DiffAgentError as e:
        raise to_http_exception(e)


@router.post("/preview", response_model=PreviewResponse)
async def preview_diff(request: DiffTextRequest) -> PreviewResponse:
    """Validate a diff against the workspace and stage it for apply"""
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    try:
        return session.change_sets.stage(request.diff_content, request.title)
    except DiffAgentError as e:
        raise to_http_exception(e)


@router.post("/apply", response_model=ApplyResult)
async def apply_diff(request: ApplyRequest) -> ApplyResult:
    """Apply a staged change set; force overrides files that drifted since preview"""
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    try:
        return await session.change_sets.apply_staged(request.preview_id, request.force)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown preview: {request.preview_id}")
    except DiffAgentError as e:
        raise to_http_exception(e)


@router.post("/undo")
async def undo_diff(request: UndoRequest) -> dict[str, Any]:
    """Revert the latest applied change set"""
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    message = await session.change_sets.undo_last(AutoReviewer(force=request.force))
    return {"message": message, "remaining": len(session.change_sets.undo_stack)}


@router.get("/history")
async def undo_history() -> list[dict[str, Any]]:
    """Applied change sets that can still be undone, newest first"""
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    return [
        {
            "title": batch.title,
            "created_at": batch.created_at,
            "files": [change.relative_path for change in batch.files],
        }
        for batch in reversed(session.change_sets.undo_stack)
    ]
