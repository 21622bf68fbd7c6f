"""
Workspace Session - Per-workspace state passed to apply/undo and context resolution
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Protocol

from .cancellation import GenerationRegistry
from .change_set import ChangeSetManager
from .workspace import Workspace


@dataclass
class SemanticSearchResult:
    """A ranked snippet from the semantic index"""

    file_path: str
    content: str
    score: float = 0.0


class SemanticSearch(Protocol):
    """Embedding index collaborator"""

    async def search(self, query: str, k: int) -> list[SemanticSearchResult]:
        ...


class WorkspaceSession:
    """Undo stack, pinned files and active generations of one workspace"""

    def __init__(
        self,
        root: str,
        config: dict[str, Any],
        semantic_search: SemanticSearch | None = None,
    ):
        self.workspace = Workspace(root)
        self.config = config
        self.change_sets = ChangeSetManager(self.workspace)
        self.generations = GenerationRegistry()
        self.semantic_search = semantic_search
        self.pinned_files: list[str] = []

    def pin_file(self, file_path: str) -> bool:
        if file_path in self.pinned_files:
            return False
        self.pinned_files.append(file_path)
        return True

    def unpin_file(self, file_path: str) -> bool:
        if file_path not in self.pinned_files:
            return False
        self.pinned_files.remove(file_path)
        return True


# One session per workspace root for the lifetime of the process
_sessions: dict[str, WorkspaceSession] = {}


def get_workspace_session(config: dict[str, Any]) -> WorkspaceSession:
    """Session for the configured workspaceRoot; refreshes its config"""
    root = os.path.abspath(config.get("workspaceRoot") or os.getcwd())
    session = _sessions.get(root)
    if session is None:
        session = WorkspaceSession(root, config)
        _sessions[root] = session
    else:
        session.config = config
    return session


def reset_workspace_sessions():
    _sessions.clear()
