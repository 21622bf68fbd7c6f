"""Chat session API endpoints"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from ..models.chat import ChatSession, CreateSessionRequest
from ..services.config_manager import ConfigManager
from ..services.session_store import SessionStore

router = APIRouter()


def get_session_store() -> SessionStore:
    return SessionStore(ConfigManager.get_instance().config_dir)


@router.get("", response_model=list[ChatSession])
async def list_sessions() -> list[ChatSession]:
    """All sessions, most recently modified first"""
    return get_session_store().get_sessions()


@router.post("", response_model=ChatSession)
async def create_session(request: CreateSessionRequest) -> ChatSession:
    return get_session_store().create_session(request.title)


@router.delete("")
async def clear_sessions() -> dict[str, Any]:
    get_session_store().clear_history()
    return {"status": "success", "message": "History cleared"}


@router.get("/{session_id}", response_model=ChatSession)
async def get_session(session_id: str) -> ChatSession:
    session = get_session_store().get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session


@router.delete("/{session_id}")
async def delete_session(session_id: str) -> dict[str, Any]:
    if not get_session_store().delete_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"status": "success", "message": "Session deleted"}
