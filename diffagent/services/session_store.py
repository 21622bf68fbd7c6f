"""
Session Store - Persist chat sessions as a JSON file in the config directory
"""

from __future__ import annotations

import json
import time
import uuid
from pathlib import Path

from pydantic import ValidationError

from ..models.chat import ChatMessage, ChatSession
from .log import log

TITLE_LENGTH = 30


class SessionStore:
    """CRUD over chat sessions, newest first"""

    def __init__(self, config_dir: Path):
        self._file = Path(config_dir) / "sessions.json"

    def _load(self) -> list[ChatSession]:
        if not self._file.exists():
            return []
        try:
            with open(self._file) as f:
                return [ChatSession.model_validate(item) for item in json.load(f)]
        except (json.JSONDecodeError, OSError, ValidationError) as e:
            log("Sessions", f"Error loading sessions: {e}")
            return []

    def _store(self, sessions: list[ChatSession]):
        self._file.parent.mkdir(parents=True, exist_ok=True)
        with open(self._file, "w") as f:
            json.dump([session.model_dump() for session in sessions], f, indent=2)

    def get_sessions(self) -> list[ChatSession]:
        return sorted(self._load(), key=lambda s: s.last_modified, reverse=True)

    def get_session(self, session_id: str) -> ChatSession | None:
        return next((s for s in self._load() if s.id == session_id), None)

    def save_session(self, session: ChatSession):
        """Insert or replace by id"""
        sessions = self._load()
        session.last_modified = time.time()
        for index, existing in enumerate(sessions):
            if existing.id == session.id:
                sessions[index] = session
                break
        else:
            sessions.append(session)
        self._store(sessions)

    def create_session(self, title: str = "New Chat") -> ChatSession:
        session = ChatSession(id=str(uuid.uuid4()), title=title)
        self.save_session(session)
        return session

    def get_or_create(self, session_id: str | None) -> ChatSession:
        """Existing session by id, or a new one (keeping the requested id)"""
        if session_id:
            session = self.get_session(session_id)
            if session is not None:
                return session
            return ChatSession(id=session_id)
        return ChatSession(id=str(uuid.uuid4()))

    def append_turn(self, session: ChatSession, user_content: str, assistant_content: str):
        """Record a user/assistant exchange and title new sessions after it"""
        session.messages.append(ChatMessage(role="user", content=user_content))
        session.messages.append(ChatMessage(role="assistant", content=assistant_content))
        if session.title == "New Chat":
            session.title = self.session_title(session)
        self.save_session(session)

    def delete_session(self, session_id: str) -> bool:
        sessions = self._load()
        remaining = [s for s in sessions if s.id != session_id]
        self._store(remaining)
        return len(remaining) != len(sessions)

    def clear_history(self):
        self._store([])

    @staticmethod
    def session_title(session: ChatSession) -> str:
        """Title from the first user message"""
        first_user = next((m for m in session.messages if m.role == "user"), None)
        if first_user is None:
            return "New Chat"
        content = first_user.content
        return content[:TITLE_LENGTH] + ("..." if len(content) > TITLE_LENGTH else "")
