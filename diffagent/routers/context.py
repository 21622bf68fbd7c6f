"""Context API endpoints - pinned files and message context resolution"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..models.context import PinnedFileRequest
from ..services.config_manager import ConfigManager
from ..services.context_resolver import resolve_context_file, resolve_message_context
from ..services.workspace_session import get_workspace_session

router = APIRouter()


class ResolveRequest(BaseModel):
    """Message to expand with pinned files and @mentions"""

    message: str


@router.get("/pinned")
async def get_pinned_files() -> dict[str, Any]:
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    return {"files": list(session.pinned_files)}


@router.post("/pinned")
async def pin_file(request: PinnedFileRequest) -> dict[str, Any]:
    """Pin a workspace file so it is inlined into every message"""
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    relative = resolve_context_file(session, request.file_path)
    if relative is None:
        raise HTTPException(status_code=404, detail=f"File not found in workspace: {request.file_path}")

    added = session.pin_file(relative)
    return {"pinned": added, "files": list(session.pinned_files)}


@router.delete("/pinned")
async def unpin_file(file_path: str) -> dict[str, Any]:
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    if not session.unpin_file(file_path):
        raise HTTPException(status_code=404, detail=f"File is not pinned: {file_path}")
    return {"files": list(session.pinned_files)}


@router.post("/resolve")
async def resolve_context(request: ResolveRequest) -> dict[str, Any]:
    """Show the message exactly as it would be sent to the model"""
    session = get_workspace_session(ConfigManager.get_instance().get_config())
    return {"content": resolve_message_context(request.message, session)}
